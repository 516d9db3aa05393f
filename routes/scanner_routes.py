"""
Scanner Routes — FabLab
Blueprint: scanner_bp  (prefix /api/scanner)

Routes:
  POST /api/scanner/decode     → decode an uploaded camera frame, look up material
  POST /api/scanner/lookup     → look up material by decoded QR text
  GET  /api/scanner/current    → last decoded payload (polling)
  POST /api/scanner/clear      → drop the buffered payload
  POST /api/scanner/checkout   → prelievo: ledger row + quantity -1
  POST /api/scanner/return     → restituzione: ledger row + quantity +1
"""

import logging

from flask import Blueprint, jsonify, request

from utils import (
    DatabaseHandler,
    NotFoundError,
    current_user_id,
    login_required,
    parse_quantity,
    serialize_timestamps,
    validate_record_id,
)
from utils.qr_handler import decode_qr_image, scan_buffer

logger = logging.getLogger(__name__)

scanner_bp = Blueprint("scanner", __name__, url_prefix="/api/scanner")

database = DatabaseHandler()


def _material_response(material):
    serialize_timestamps([material], "created_at", "updated_at")
    return jsonify({"success": True, "material": material})


def _acting_trainer():
    """Trainer linked to the logged-in profile, or None"""
    return database.get_trainer_by_user(current_user_id())


def _movement_payload():
    data = request.get_json(silent=True) or {}
    material_id = data.get("material_id", "")
    if not validate_record_id(material_id):
        raise ValueError("ID materiale non valido")
    return material_id, parse_quantity(data.get("quantita"))


# ─── Decode / lookup ──────────────────────────────────────────────────────────


@scanner_bp.route("/decode", methods=["POST"])
@login_required
def decode_frame():
    """Decode a QR code from an uploaded frame and resolve the material"""
    try:
        frame = request.files.get("frame")
        if not frame:
            return jsonify({"success": False, "error": "Nessuna immagine ricevuta"}), 400

        code = decode_qr_image(frame.read())
        if not code:
            return jsonify(
                {"success": False, "detected": False, "error": "Nessun QR code rilevato"}
            ), 422

        scan_buffer.record(current_user_id(), code)
        material = database.get_material_by_qr(code)
        if not material:
            return jsonify(
                {"success": False, "detected": True, "qr_code": code,
                 "error": "Materiale non trovato"}
            ), 404

        return _material_response(material)

    except Exception as e:
        logger.error(f"Error decoding frame: {str(e)}")
        return jsonify({"success": False, "error": "Errore nella scansione"}), 500


@scanner_bp.route("/lookup", methods=["POST"])
@login_required
def lookup_material():
    """Fetch material data by decoded QR text"""
    try:
        data = request.get_json(silent=True) or {}
        qr_code = (data.get("qr_code") or "").strip()

        if not qr_code:
            return jsonify({"success": False, "error": "QR code non valido"}), 400

        scan_buffer.record(current_user_id(), qr_code)
        material = database.get_material_by_qr(qr_code)
        if not material:
            return jsonify({"success": False, "error": "Materiale non trovato"}), 404

        return _material_response(material)

    except Exception as e:
        logger.error(f"Error looking up material: {str(e)}")
        return jsonify({"success": False, "error": "Errore nella scansione"}), 500


@scanner_bp.route("/current", methods=["GET"])
@login_required
def current_scan():
    """Polling endpoint: last decoded payload within the hold window"""
    code = scan_buffer.get_current_code(current_user_id())
    return jsonify({"success": True, "qr_code": code, "detected": code is not None})


@scanner_bp.route("/clear", methods=["POST"])
@login_required
def clear_scan():
    scan_buffer.clear(current_user_id())
    return jsonify({"success": True})


# ─── Movements ────────────────────────────────────────────────────────────────


@scanner_bp.route("/checkout", methods=["POST"])
@login_required
def checkout():
    """Register a prelievo for the scanned material (atomic)"""
    try:
        material_id, quantita = _movement_payload()

        trainer = _acting_trainer()
        if not trainer:
            return jsonify(
                {"success": False, "error": "Profilo formatore non trovato"}
            ), 404

        result = database.checkout_material_atomic(
            material_id, trainer["trainer_id"], quantita
        )
        scan_buffer.clear(current_user_id())

        serialize_timestamps([result["movement"]], "data_prelievo", "data_restituzione", "created_at")
        serialize_timestamps([result["material"]], "created_at", "updated_at")
        return jsonify(
            {"success": True, "message": "Prelievo registrato con successo!", **result}
        )

    except NotFoundError as e:
        return jsonify({"success": False, "error": str(e)}), 404
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception as e:
        logger.error(f"Error in checkout: {str(e)}")
        return jsonify({"success": False, "error": "Errore nel prelievo"}), 500


@scanner_bp.route("/return", methods=["POST"])
@login_required
def return_material():
    """Register a restituzione for the scanned material (atomic)"""
    try:
        material_id, quantita = _movement_payload()

        trainer = _acting_trainer()
        if not trainer:
            return jsonify(
                {"success": False, "error": "Profilo formatore non trovato"}
            ), 404

        result = database.return_material_atomic(
            material_id, trainer["trainer_id"], quantita
        )
        scan_buffer.clear(current_user_id())

        serialize_timestamps([result["movement"]], "data_prelievo", "data_restituzione", "created_at")
        serialize_timestamps([result["material"]], "created_at", "updated_at")
        return jsonify(
            {"success": True, "message": "Restituzione registrata con successo!", **result}
        )

    except NotFoundError as e:
        return jsonify({"success": False, "error": str(e)}), 404
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception as e:
        logger.error(f"Error in return: {str(e)}")
        return jsonify({"success": False, "error": "Errore nella restituzione"}), 500
