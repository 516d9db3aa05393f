"""
FabLab Inventory & Scheduling Dashboard - Main Flask Application
Materials with QR checkout/return, trainers, partner schools and activities
"""

import csv
import io
import logging
from datetime import date, datetime

import openpyxl
from flask import (
    Flask,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Mail, Message
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect

from config import get_config
from routes.scanner_routes import scanner_bp
from utils import (
    ACTIVITY_STATES,
    DatabaseHandler,
    NotFoundError,
    current_user_id,
    db,
    filter_activities_by_date,
    format_date_it,
    format_timestamp,
    login_required,
    mask_email,
    parse_date,
    parse_quantity,
    parse_time,
    role_required,
    clean_text,
    serialize_timestamps,
    validate_email,
    validate_record_id,
)
from utils.qr_handler import generate_qr_png, scan_buffer

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(get_config())

mail = Mail(app)
logger.info(f"Flask-Mail configured with server: {app.config['MAIL_SERVER']}")

csrf = CSRFProtect(app)

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=["2000 per day", "300 per hour"],
    storage_uri=app.config["RATELIMIT_STORAGE_URI"],
)

database = DatabaseHandler(app)
migrate = Migrate(app, db)

scan_buffer.hold_seconds = app.config["SCAN_BUFFER_SECONDS"]

# Scanner blueprint: movement endpoints share one per-IP budget
limiter.limit("60 per minute")(scanner_bp)
app.register_blueprint(scanner_bp)

ADMIN = "amministratore"

MENU_ITEMS = [
    ("Dashboard", "dashboard"),
    ("Materiali", "materiali"),
    ("Scanner QR", "scanner"),
    ("Attività", "attivita"),
    ("Formatori", "formatori"),
    ("Scuole", "scuole"),
]

MOVEMENT_EXPORT_HEADERS = [
    "ID",
    "Materiale",
    "Formatore",
    "Tipo",
    "Quantità",
    "Data Prelievo",
    "Data Restituzione",
    "Registrato il",
]

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _error(message, status=400):
    return jsonify({"success": False, "error": message}), status


def _parse_date_range(args):
    """
    Parse start_date/end_date (YYYY-MM-DD) into datetimes; end is end of day

    Raises:
        ValueError: On malformed dates
    """
    start_date = end_date = None
    if args.get("start_date"):
        try:
            start_date = datetime.strptime(args["start_date"], "%Y-%m-%d")
        except ValueError:
            raise ValueError("Formato data inizio non valido. Usa YYYY-MM-DD")
    if args.get("end_date"):
        try:
            end_date = datetime.strptime(args["end_date"], "%Y-%m-%d").replace(
                hour=23, minute=59, second=59
            )
        except ValueError:
            raise ValueError("Formato data fine non valido. Usa YYYY-MM-DD")
    return start_date, end_date


def _movement_rows(movements):
    tz_name = app.config["LOCAL_TIMEZONE"]

    for m in movements:
        yield [
            m["movement_id"],
            m["materiale_nome"],
            m["formatore_nome"] or "",
            m["tipo_movimento"],
            m["quantita"],
            format_timestamp(m["data_prelievo"], tz_name),
            format_timestamp(m["data_restituzione"], tz_name),
            format_timestamp(m["created_at"], tz_name),
        ]


def _build_movements_workbook(movements):
    """Excel workbook of the movement ledger, columns sized to content"""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Movimenti"
    ws.append(MOVEMENT_EXPORT_HEADERS)
    for row in _movement_rows(movements):
        ws.append(row)

    for column in ws.columns:
        cells = list(column)
        max_length = max(len(str(cell.value or "")) for cell in cells)
        ws.column_dimensions[cells[0].column_letter].width = max_length + 2

    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out


def _build_movements_csv(movements):
    si = io.StringIO()
    cw = csv.writer(si)
    cw.writerow(MOVEMENT_EXPORT_HEADERS)
    for row in _movement_rows(movements):
        cw.writerow(row)
    return io.BytesIO(si.getvalue().encode("utf-8"))


# ==================== Template Context ====================


app.add_template_filter(format_date_it, "data_estesa")


@app.context_processor
def inject_navigation():
    """Sidebar entries and the logged-in user for every template"""
    return {
        "menu_items": MENU_ITEMS,
        "current_user": {
            "nome": session.get("nome"),
            "role": session.get("role"),
        },
        "is_admin": session.get("role") == ADMIN,
    }


# ==================== Page Routes ====================


@app.route("/")
def index():
    """Landing: dashboard when logged in, login page otherwise"""
    if session.get("user_id"):
        return redirect(url_for("dashboard"))
    return redirect(url_for("auth_page"))


@app.route("/auth")
def auth_page():
    """Login / sign-up page"""
    if session.get("user_id"):
        return redirect(url_for("dashboard"))
    return render_template("auth.html")


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("auth_page"))


@app.route("/dashboard")
@login_required
def dashboard():
    """Summary cards, below-threshold alert and trainer leaderboard"""
    stats = database.get_dashboard_stats(app.config["LEADERBOARD_SIZE"])
    return render_template("dashboard.html", stats=stats)


@app.route("/materiali")
@login_required
def materiali():
    return render_template("materiali.html", materiali=database.get_all_materials())


@app.route("/scanner")
@login_required
def scanner():
    return render_template("scanner.html")


@app.route("/attivita")
@login_required
def attivita():
    """Calendar view: activities of the selected day (default today)"""
    try:
        selected = parse_date(request.args.get("data")) or date.today()
    except ValueError:
        selected = date.today()

    activities = database.get_all_activities()
    return render_template(
        "attivita.html",
        selected_date=selected,
        attivita=filter_activities_by_date(activities, selected),
        scuole=database.get_all_schools(),
        formatori=database.get_all_trainers(),
        stati=ACTIVITY_STATES,
    )


@app.route("/formatori")
@login_required
def formatori():
    return render_template("formatori.html", formatori=database.get_all_trainers())


@app.route("/scuole")
@login_required
def scuole():
    return render_template("scuole.html", scuole=database.get_all_schools())


# ==================== Auth API ====================


@app.route("/api/auth/login", methods=["POST"])
@limiter.limit("10 per minute")
def api_login():
    """Verify credentials and create session"""
    try:
        data = request.get_json(silent=True) or request.form
        email = (data.get("email") or "").strip()
        password = data.get("password") or ""

        if not email or not password:
            return _error("Email e password sono obbligatorie")

        profile = database.authenticate(email, password)
        if not profile:
            return _error("Credenziali non valide", 401)

        session.clear()
        session["user_id"] = profile["profile_id"]
        session["role"] = profile["role"]
        session["nome"] = profile["nome"]
        session.permanent = True

        return jsonify(
            {"success": True, "message": "Accesso effettuato", "role": profile["role"]}
        )

    except Exception as e:
        logger.error(f"Error in login: {str(e)}")
        return _error("Si è verificato un errore", 500)


@app.route("/api/auth/register", methods=["POST"])
@limiter.limit("5 per minute")
def api_register():
    """Sign up a new trainer (profile + linked formatore record)"""
    try:
        data = request.get_json(silent=True) or request.form
        nome = clean_text(data.get("nome", ""))
        cognome = clean_text(data.get("cognome", ""))
        email = (data.get("email") or "").strip().lower()
        password = data.get("password") or ""

        if not all([nome, email, password]):
            return _error("Nome, email e password sono obbligatori")
        if not validate_email(email):
            return _error("Formato email non valido")
        if len(password) < 8:
            return _error("La password deve avere almeno 8 caratteri")
        if database.get_profile_by_email(email):
            return _error("Email già registrata")

        result = database.register_trainer(
            {"nome": nome, "cognome": cognome, "email": email, "password": password}
        )
        profile, trainer = result["profile"], result["trainer"]

        return jsonify(
            {
                "success": True,
                "message": "Registrazione completata!",
                "profile_id": profile["profile_id"],
                "trainer_id": trainer["trainer_id"],
            }
        ), 201

    except ValueError as e:
        return _error(str(e))
    except Exception as e:
        logger.error(f"Error in registration: {str(e)}")
        return _error("Errore durante la registrazione", 500)


@app.route("/api/auth/logout", methods=["POST"])
def api_logout():
    session.clear()
    return jsonify({"success": True, "message": "Logout effettuato con successo"})


# ==================== Materials API ====================


@app.route("/api/materials", methods=["GET"])
@login_required
def get_materials():
    try:
        materials = serialize_timestamps(
            database.get_all_materials(), "created_at", "updated_at"
        )
        return jsonify({"success": True, "materials": materials})
    except Exception as e:
        logger.error(f"Error getting materials: {str(e)}")
        return _error("Errore nel caricamento dei materiali", 500)


@app.route("/api/materials", methods=["POST"])
@role_required(ADMIN)
def add_material():
    """Add new material; the QR identifier is generated server-side"""
    try:
        data = request.get_json(silent=True) or request.form
        nome = clean_text(data.get("nome", ""))
        descrizione = clean_text(data.get("descrizione", ""))

        if not nome:
            return _error("Il nome del materiale è obbligatorio")

        try:
            quantita = int(data.get("quantita_disponibile", 0) or 0)
            soglia = int(
                data.get("soglia_minima", app.config["DEFAULT_SOGLIA_MINIMA"])
            )
        except (TypeError, ValueError):
            return _error("Quantità e soglia devono essere numeri interi")

        material = database.create_material(
            {
                "nome": nome,
                "descrizione": descrizione,
                "quantita_disponibile": quantita,
                "soglia_minima": soglia,
            }
        )
        serialize_timestamps([material], "created_at", "updated_at")

        return jsonify(
            {"success": True, "message": "Materiale aggiunto con successo!", "material": material}
        ), 201

    except ValueError as e:
        return _error(str(e))
    except Exception as e:
        logger.error(f"Error adding material: {str(e)}")
        return _error("Errore nell'aggiunta del materiale", 500)


@app.route("/api/materials/<int:material_id>/qr.png", methods=["GET"])
@login_required
def download_material_qr(material_id):
    """Serve the material's QR label as a PNG download"""
    try:
        material = database.get_material_by_id(material_id)
        if not material:
            return _error("Materiale non trovato", 404)

        png = generate_qr_png(material["qr_code"])
        return send_file(
            io.BytesIO(png),
            mimetype="image/png",
            as_attachment=request.args.get("download", "1") != "0",
            download_name=f"qr-{material['nome']}.png",
        )
    except Exception as e:
        logger.error(f"Error generating QR: {str(e)}")
        return _error("Errore nella generazione del QR code", 500)


# ==================== Trainers / Schools API ====================


@app.route("/api/trainers", methods=["GET"])
@login_required
def get_trainers():
    try:
        trainers = serialize_timestamps(database.get_all_trainers(), "created_at")
        return jsonify({"success": True, "trainers": trainers})
    except Exception as e:
        logger.error(f"Error getting trainers: {str(e)}")
        return _error("Errore nel caricamento dei formatori", 500)


@app.route("/api/schools", methods=["GET"])
@login_required
def get_schools():
    try:
        schools = serialize_timestamps(database.get_all_schools(), "created_at")
        return jsonify({"success": True, "schools": schools})
    except Exception as e:
        logger.error(f"Error getting schools: {str(e)}")
        return _error("Errore nel caricamento delle scuole", 500)


@app.route("/api/schools", methods=["POST"])
@role_required(ADMIN)
def add_school():
    try:
        data = request.get_json(silent=True) or request.form
        nome = clean_text(data.get("nome", ""))
        indirizzo = clean_text(data.get("indirizzo", ""))
        contatto = clean_text(data.get("contatto", ""))
        email = (data.get("email") or "").strip()

        if not all([nome, indirizzo]):
            return _error("Nome e indirizzo sono obbligatori")
        if email and not validate_email(email):
            return _error("Formato email non valido")

        school = database.create_school(
            {"nome": nome, "indirizzo": indirizzo, "contatto": contatto, "email": email}
        )
        serialize_timestamps([school], "created_at")
        return jsonify(
            {"success": True, "message": "Scuola aggiunta con successo!", "school": school}
        ), 201

    except Exception as e:
        logger.error(f"Error adding school: {str(e)}")
        return _error("Errore nell'aggiunta della scuola", 500)


# ==================== Activities API ====================


@app.route("/api/activities", methods=["GET"])
@login_required
def get_activities():
    """All activities ordered by date and time; ?data=YYYY-MM-DD filters one day"""
    try:
        try:
            day = parse_date(request.args.get("data"))
        except ValueError:
            return _error("Formato data non valido. Usa YYYY-MM-DD")

        activities = filter_activities_by_date(database.get_all_activities(), day)
        serialize_timestamps(activities, "created_at")
        return jsonify({"success": True, "activities": activities, "count": len(activities)})

    except Exception as e:
        logger.error(f"Error getting activities: {str(e)}")
        return _error("Errore nel caricamento delle attività", 500)


@app.route("/api/activities", methods=["POST"])
@role_required(ADMIN)
def add_activity():
    try:
        data = request.get_json(silent=True) or request.form
        titolo = clean_text(data.get("titolo", ""))
        if not titolo:
            return _error("Il titolo è obbligatorio")

        try:
            giorno = parse_date(data.get("data"))
            orario = parse_time(data.get("orario"))
        except ValueError:
            return _error("Formato data o orario non valido")
        if giorno is None or orario is None:
            return _error("Data e orario sono obbligatori")

        scuola_id = data.get("scuola_id") or None
        formatore_id = data.get("formatore_id") or None
        for record_id in (scuola_id, formatore_id):
            if record_id is not None and not validate_record_id(record_id):
                return _error("ID non valido")

        activity = database.create_activity(
            {
                "titolo": titolo,
                "descrizione": clean_text(data.get("descrizione", "")),
                "data": giorno,
                "orario": orario,
                "stato": data.get("stato") or "programmata",
                "scuola_id": scuola_id,
                "formatore_id": formatore_id,
            }
        )
        serialize_timestamps([activity], "created_at")
        return jsonify(
            {"success": True, "message": "Attività programmata!", "activity": activity}
        ), 201

    except ValueError as e:
        return _error(str(e))
    except Exception as e:
        logger.error(f"Error adding activity: {str(e)}")
        return _error("Errore nella creazione dell'attività", 500)


@app.route("/api/activities/<int:activity_id>/status", methods=["PATCH", "POST"])
@role_required(ADMIN)
def update_activity_status(activity_id):
    try:
        data = request.get_json(silent=True) or {}
        stato = data.get("stato", "")
        ore = data.get("ore")
        if ore is not None:
            try:
                ore = int(ore)
            except (TypeError, ValueError):
                return _error("Ore non valide")

        activity = database.update_activity_status(activity_id, stato, ore)
        serialize_timestamps([activity], "created_at")
        return jsonify({"success": True, "activity": activity})

    except NotFoundError as e:
        return _error(str(e), 404)
    except ValueError as e:
        return _error(str(e))
    except Exception as e:
        logger.error(f"Error updating activity: {str(e)}")
        return _error("Errore nell'aggiornamento dell'attività", 500)


@app.route("/api/activities/<int:activity_id>/consumptions", methods=["GET"])
@login_required
def get_activity_consumptions(activity_id):
    try:
        if not database.get_activity_by_id(activity_id):
            return _error("Attività non trovata", 404)
        consumptions = serialize_timestamps(
            database.get_consumptions_for_activity(activity_id), "created_at"
        )
        return jsonify({"success": True, "consumptions": consumptions})
    except Exception as e:
        logger.error(f"Error getting consumptions: {str(e)}")
        return _error("Si è verificato un errore", 500)


@app.route("/api/activities/<int:activity_id>/consumptions", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def add_activity_consumption(activity_id):
    """Record material used during an activity (decrements stock)"""
    try:
        data = request.get_json(silent=True) or {}
        material_id = data.get("material_id", "")
        if not validate_record_id(material_id):
            return _error("ID materiale non valido")
        quantita = parse_quantity(data.get("quantita_usata"))

        result = database.record_consumption_atomic(activity_id, material_id, quantita)
        serialize_timestamps([result["consumption"]], "created_at")
        serialize_timestamps([result["material"]], "created_at", "updated_at")
        return jsonify(
            {"success": True, "message": "Consumo registrato", **result}
        ), 201

    except NotFoundError as e:
        return _error(str(e), 404)
    except ValueError as e:
        return _error(str(e))
    except Exception as e:
        logger.error(f"Error recording consumption: {str(e)}")
        return _error("Errore nella registrazione del consumo", 500)


# ==================== Movements / Dashboard API ====================


@app.route("/api/movements", methods=["GET"])
@login_required
def get_movements():
    """Most recent ledger entries"""
    try:
        limit = request.args.get("limit", 10, type=int)
        limit = max(1, min(limit, 100))
        movements = serialize_timestamps(
            database.get_recent_movements(limit),
            "data_prelievo",
            "data_restituzione",
            "created_at",
        )
        return jsonify({"success": True, "movements": movements})
    except Exception as e:
        logger.error(f"Error getting movements: {str(e)}")
        return _error("Si è verificato un errore", 500)


@app.route("/api/dashboard/stats", methods=["GET"])
@login_required
def get_dashboard_stats():
    try:
        stats = database.get_dashboard_stats(app.config["LEADERBOARD_SIZE"])
        return jsonify({"success": True, "stats": stats})
    except Exception as e:
        logger.error(f"Errore caricamento statistiche: {str(e)}")
        return _error("Errore nel caricamento delle statistiche", 500)


@app.route("/api/me", methods=["GET"])
@login_required
def get_me():
    """Logged-in profile and, when linked, its trainer record"""
    profile = database.get_profile_by_id(current_user_id())
    if not profile:
        session.clear()
        return _error("Utente non autenticato", 401)
    trainer = database.get_trainer_by_user(profile["profile_id"])
    serialize_timestamps([profile], "created_at")
    if trainer:
        serialize_timestamps([trainer], "created_at")
    return jsonify({"success": True, "profile": profile, "trainer": trainer})


# ==================== Admin Reporting ====================


@app.route("/api/admin/export", methods=["GET"])
@role_required(ADMIN)
def export_movements():
    """Export the movement ledger as CSV (default) or XLSX"""
    try:
        fmt = request.args.get("format", "csv")
        start_date, end_date = _parse_date_range(request.args)

        movements = database.get_movements_filtered(start_date, end_date)
        record_count = len(movements)
        max_records = app.config["MAX_EXPORT_RECORDS"]
        if record_count > max_records:
            return _error(
                f"Troppi dati ({record_count:,} movimenti). "
                f"Il massimo esportabile è {max_records:,}. Restringi l'intervallo di date."
            )

        logger.info(f"Exporting {record_count} movements as {fmt.upper()}")
        filename = f"movimenti_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        if fmt == "xlsx":
            return send_file(
                _build_movements_workbook(movements),
                mimetype=XLSX_MIMETYPE,
                as_attachment=True,
                download_name=f"{filename}.xlsx",
            )

        return send_file(
            _build_movements_csv(movements),
            mimetype="text/csv",
            as_attachment=True,
            download_name=f"{filename}.csv",
        )

    except ValueError as e:
        return _error(str(e))
    except Exception as e:
        logger.error(f"Error exporting movements: {str(e)}")
        return _error("Errore durante l'esportazione", 500)


@app.route("/api/admin/send_stock_alert", methods=["POST"])
@role_required(ADMIN)
@limiter.limit("5 per minute")
def send_stock_alert():
    """Email the list of materials at or below their minimum threshold"""
    try:
        data = request.get_json(silent=True) or {}
        recipient = (data.get("email") or "").strip()
        if not validate_email(recipient):
            return _error("Formato email non valido")

        materials = database.get_materials_below_threshold()
        if not materials:
            return _error("Nessun materiale sotto la soglia minima")

        lines = "\n".join(
            f"- {m['nome']}: {m['quantita_disponibile']} pz (soglia {m['soglia_minima']})"
            for m in materials
        )
        body = f"""Attenzione: {len(materials)} materiali sotto la soglia minima.

{lines}

Si consiglia di riordinare i materiali elencati.

---
Email inviata automaticamente dal gestionale FabLab.
"""
        msg = Message(
            subject="[FabLab] Materiali sotto soglia",
            sender=(app.config["MAIL_SENDER_NAME"], app.config["MAIL_DEFAULT_SENDER"]),
            recipients=[recipient],
            body=body,
        )
        mail.send(msg)

        logger.info(f"Stock alert sent to {mask_email(recipient)} ({len(materials)} materials)")
        return jsonify(
            {"success": True, "message": f"Email inviata a {recipient}", "count": len(materials)}
        )

    except Exception as e:
        logger.error(f"Error sending stock alert: {str(e)}")
        return _error(f"Invio email non riuscito: {str(e)}", 500)


# ==================== Debug/Development Routes ====================
# Only registered in development mode


if app.config.get("DEBUG"):

    @app.route("/debug/scan", methods=["GET"])
    def debug_scan():
        """Simulate a QR decode without a camera (development only)"""
        code = request.args.get("code", "")
        if not code:
            return _error("Nessun codice fornito")
        scan_buffer.record(current_user_id(), code)
        return jsonify({"success": True, "message": f"Scansione simulata: {code}"})

    @app.route("/debug/clear", methods=["GET"])
    def debug_clear():
        scan_buffer.clear(current_user_id())
        return jsonify({"success": True, "message": "Buffer scanner svuotato"})

    logger.info("Debug routes registered (development mode)")


# ==================== Error Handlers ====================


@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors: API gets JSON, pages redirect to the landing route"""
    if request.path.startswith("/api/"):
        return _error("Risorsa non trovata", 404)
    return redirect(url_for("index"))


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"Internal error: {str(error)}")
    return _error("Errore del server", 500)


@app.errorhandler(429)
def rate_limited(error):
    return _error("Troppe richieste, riprova tra poco", 429)


if __name__ == "__main__":
    # For production, use gunicorn or similar WSGI server
    app.run(host="0.0.0.0", port=5000, debug=app.config["DEBUG"])
