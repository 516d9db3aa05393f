"""
API tests: authentication, materials, scanner movements, activities and reporting
"""

import csv
import io

import openpyxl

from app import mail
from utils.qr_handler import generate_qr_png, scan_buffer


class TestAuth:
    def test_login_sets_session(self, client, admin):
        response = client.post(
            "/api/auth/login", json={"email": "admin@fablab.test", "password": "password123"}
        )
        assert response.status_code == 200
        assert response.get_json()["role"] == "amministratore"

        me = client.get("/api/me").get_json()
        assert me["profile"]["email"] == "admin@fablab.test"
        assert me["trainer"] is None

    def test_login_wrong_password(self, client, admin):
        response = client.post(
            "/api/auth/login", json={"email": "admin@fablab.test", "password": "nope"}
        )
        assert response.status_code == 401
        assert response.get_json()["error"] == "Credenziali non valide"

    def test_login_missing_fields(self, client):
        response = client.post("/api/auth/login", json={"email": ""})
        assert response.status_code == 400

    def test_register_creates_trainer(self, client):
        response = client.post(
            "/api/auth/register",
            json={
                "nome": "Luca",
                "cognome": "Verdi",
                "email": "luca@fablab.test",
                "password": "password123",
            },
        )
        assert response.status_code == 201
        assert response.get_json()["trainer_id"]

        client.post(
            "/api/auth/login", json={"email": "luca@fablab.test", "password": "password123"}
        )
        me = client.get("/api/me").get_json()
        assert me["profile"]["role"] == "formatore"
        assert me["trainer"]["nome_completo"] == "Luca Verdi"

    def test_register_duplicate_email(self, client, trainer):
        response = client.post(
            "/api/auth/register",
            json={"nome": "Giulia", "email": "giulia@fablab.test", "password": "password123"},
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "Email già registrata"

    def test_register_short_password(self, client):
        response = client.post(
            "/api/auth/register",
            json={"nome": "Ada", "email": "ada@fablab.test", "password": "corta"},
        )
        assert response.status_code == 400

    def test_api_requires_login(self, client):
        response = client.get("/api/materials")
        assert response.status_code == 401
        assert response.get_json()["error"] == "Utente non autenticato"

    def test_logout(self, trainer_client):
        trainer_client.post("/api/auth/logout")
        assert trainer_client.get("/api/me").status_code == 401


class TestMaterialsApi:
    def test_admin_adds_material(self, admin_client):
        response = admin_client.post(
            "/api/materials",
            json={"nome": "Saldatore", "quantita_disponibile": 4, "soglia_minima": 2},
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body["message"] == "Materiale aggiunto con successo!"
        assert body["material"]["qr_code"].startswith("MAT-")

        materials = admin_client.get("/api/materials").get_json()["materials"]
        assert [m["nome"] for m in materials] == ["Saldatore"]

    def test_material_text_stored_as_typed(self, admin_client):
        response = admin_client.post(
            "/api/materials",
            json={"nome": "Filo d'acciaio & rame", "descrizione": "Bobina <0,5mm>"},
        )
        material = response.get_json()["material"]
        assert material["nome"] == "Filo d'acciaio & rame"
        assert material["descrizione"] == "Bobina <0,5mm>"

    def test_trainer_cannot_add_material(self, trainer_client):
        response = trainer_client.post(
            "/api/materials", json={"nome": "Saldatore", "quantita_disponibile": 4}
        )
        assert response.status_code == 403

    def test_add_material_requires_name(self, admin_client):
        response = admin_client.post("/api/materials", json={"quantita_disponibile": 4})
        assert response.status_code == 400

    def test_add_material_negative_quantity(self, admin_client):
        response = admin_client.post(
            "/api/materials", json={"nome": "Viti", "quantita_disponibile": -3}
        )
        assert response.status_code == 400

    def test_qr_png_download(self, trainer_client, material):
        response = trainer_client.get(f"/api/materials/{material['material_id']}/qr.png")
        assert response.status_code == 200
        assert response.mimetype == "image/png"
        assert response.data.startswith(b"\x89PNG")
        assert "attachment" in response.headers["Content-Disposition"]

    def test_qr_png_inline(self, trainer_client, material):
        response = trainer_client.get(
            f"/api/materials/{material['material_id']}/qr.png?download=0"
        )
        assert "attachment" not in response.headers.get("Content-Disposition", "")

    def test_qr_png_unknown_material(self, trainer_client):
        assert trainer_client.get("/api/materials/999/qr.png").status_code == 404


class TestScannerApi:
    def test_lookup(self, trainer_client, material):
        response = trainer_client.post(
            "/api/scanner/lookup", json={"qr_code": material["qr_code"]}
        )
        assert response.status_code == 200
        assert response.get_json()["material"]["nome"] == "Arduino Uno"

        current = trainer_client.get("/api/scanner/current").get_json()
        assert current["qr_code"] == material["qr_code"]

    def test_lookup_unknown_code(self, trainer_client):
        response = trainer_client.post("/api/scanner/lookup", json={"qr_code": "MAT-0-x"})
        assert response.status_code == 404
        assert response.get_json()["error"] == "Materiale non trovato"

    def test_lookup_empty_code(self, trainer_client):
        response = trainer_client.post("/api/scanner/lookup", json={"qr_code": " "})
        assert response.status_code == 400

    def test_decode_uploaded_frame(self, trainer_client, material):
        frame = generate_qr_png(material["qr_code"])
        response = trainer_client.post(
            "/api/scanner/decode",
            data={"frame": (io.BytesIO(frame), "frame.png")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 200
        assert response.get_json()["material"]["material_id"] == material["material_id"]

    def test_decode_without_frame(self, trainer_client):
        response = trainer_client.post(
            "/api/scanner/decode", data={}, content_type="multipart/form-data"
        )
        assert response.status_code == 400

    def test_checkout_then_return(self, trainer_client, trainer, material):
        scan_buffer.record(trainer["user_id"], material["qr_code"])
        response = trainer_client.post(
            "/api/scanner/checkout", json={"material_id": material["material_id"]}
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == "Prelievo registrato con successo!"
        assert body["material"]["quantita_disponibile"] == 2
        assert scan_buffer.get_current_code(trainer["user_id"]) is None

        response = trainer_client.post(
            "/api/scanner/return", json={"material_id": material["material_id"]}
        )
        body = response.get_json()
        assert body["message"] == "Restituzione registrata con successo!"
        assert body["material"]["quantita_disponibile"] == 3

        movements = trainer_client.get("/api/movements").get_json()["movements"]
        assert [m["tipo_movimento"] for m in movements] == ["restituzione", "prelievo"]

    def test_checkout_out_of_stock(self, trainer_client, material):
        response = trainer_client.post(
            "/api/scanner/checkout",
            json={"material_id": material["material_id"], "quantita": 5},
        )
        assert response.status_code == 400
        assert "Quantità non disponibile" in response.get_json()["error"]

    def test_checkout_invalid_material_id(self, trainer_client):
        response = trainer_client.post("/api/scanner/checkout", json={"material_id": "abc"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "ID materiale non valido"

    def test_checkout_without_trainer_profile(self, admin_client, material):
        response = admin_client.post(
            "/api/scanner/checkout", json={"material_id": material["material_id"]}
        )
        assert response.status_code == 404
        assert response.get_json()["error"] == "Profilo formatore non trovato"

    def test_checkout_unknown_material(self, trainer_client):
        response = trainer_client.post("/api/scanner/checkout", json={"material_id": "999"})
        assert response.status_code == 404
        assert response.get_json()["error"] == "Materiale non trovato"

    def test_return_unknown_material(self, trainer_client):
        response = trainer_client.post("/api/scanner/return", json={"material_id": 999})
        assert response.status_code == 404
        assert response.get_json()["error"] == "Materiale non trovato"

    def test_scans_are_private_to_each_user(self, app, trainer_client, admin, material):
        trainer_client.post("/api/scanner/lookup", json={"qr_code": material["qr_code"]})

        other = app.test_client()
        other.post(
            "/api/auth/login", json={"email": "admin@fablab.test", "password": "password123"}
        )
        assert other.get("/api/scanner/current").get_json()["qr_code"] is None
        assert trainer_client.get("/api/scanner/current").get_json()["qr_code"] == (
            material["qr_code"]
        )

        # Clearing one user's scan leaves the other's in place
        other.post("/api/scanner/lookup", json={"qr_code": material["qr_code"]})
        other.post("/api/scanner/clear")
        assert trainer_client.get("/api/scanner/current").get_json()["detected"] is True


class TestActivitiesApi:
    def test_create_and_filter_by_day(self, admin_client, school, trainer):
        response = admin_client.post(
            "/api/activities",
            json={
                "titolo": "Stampa 3D",
                "data": "2025-03-03",
                "orario": "14:30",
                "scuola_id": school["school_id"],
                "formatore_id": trainer["trainer_id"],
            },
        )
        assert response.status_code == 201
        assert response.get_json()["message"] == "Attività programmata!"

        admin_client.post(
            "/api/activities",
            json={"titolo": "Laser", "data": "2025-03-04", "orario": "10:00"},
        )

        body = admin_client.get("/api/activities?data=2025-03-03").get_json()
        assert body["count"] == 1
        assert body["activities"][0]["titolo"] == "Stampa 3D"
        assert body["activities"][0]["scuola_nome"] == "IIS Galilei"

        assert admin_client.get("/api/activities").get_json()["count"] == 2

    def test_filter_bad_date(self, trainer_client):
        assert trainer_client.get("/api/activities?data=03-03-2025").status_code == 400

    def test_create_requires_date_and_time(self, admin_client):
        response = admin_client.post("/api/activities", json={"titolo": "Senza data"})
        assert response.status_code == 400

    def test_status_update_credits_trainer(self, admin_client, activity):
        response = admin_client.patch(
            f"/api/activities/{activity['activity_id']}/status",
            json={"stato": "conclusa", "ore": 2},
        )
        assert response.status_code == 200
        assert response.get_json()["activity"]["stato"] == "conclusa"

        trainers = admin_client.get("/api/trainers").get_json()["trainers"]
        assert trainers[0]["lezioni_concluse"] == 1
        assert trainers[0]["ore_totali"] == 2

    def test_status_unknown_activity(self, admin_client):
        response = admin_client.patch("/api/activities/999/status", json={"stato": "conclusa"})
        assert response.status_code == 404

    def test_consumption(self, trainer_client, activity, material):
        url = f"/api/activities/{activity['activity_id']}/consumptions"
        response = trainer_client.post(
            url, json={"material_id": material["material_id"], "quantita_usata": 2}
        )
        assert response.status_code == 201
        assert response.get_json()["material"]["quantita_disponibile"] == 1

        consumptions = trainer_client.get(url).get_json()["consumptions"]
        assert consumptions[0]["quantita_usata"] == 2

    def test_consumption_unknown_activity(self, trainer_client, material):
        response = trainer_client.post(
            "/api/activities/999/consumptions",
            json={"material_id": material["material_id"], "quantita_usata": 1},
        )
        assert response.status_code == 404
        assert response.get_json()["error"] == "Attività non trovata"

    def test_consumption_unknown_material(self, trainer_client, activity):
        response = trainer_client.post(
            f"/api/activities/{activity['activity_id']}/consumptions",
            json={"material_id": "999", "quantita_usata": 1},
        )
        assert response.status_code == 404
        assert response.get_json()["error"] == "Materiale non trovato"

    def test_reopened_activity_credits_once(self, admin_client, activity):
        url = f"/api/activities/{activity['activity_id']}/status"
        admin_client.patch(url, json={"stato": "conclusa", "ore": 2})
        admin_client.patch(url, json={"stato": "in_corso"})
        admin_client.patch(url, json={"stato": "conclusa", "ore": 2})

        trainers = admin_client.get("/api/trainers").get_json()["trainers"]
        assert trainers[0]["lezioni_concluse"] == 1
        assert trainers[0]["ore_totali"] == 2


class TestSchoolsApi:
    def test_admin_adds_school(self, admin_client):
        response = admin_client.post(
            "/api/schools", json={"nome": "Liceo Volta", "indirizzo": "Corso Italia 40"}
        )
        assert response.status_code == 201
        schools = admin_client.get("/api/schools").get_json()["schools"]
        assert schools[0]["nome"] == "Liceo Volta"

    def test_school_text_stored_as_typed(self, admin_client):
        admin_client.post(
            "/api/schools",
            json={"nome": "Rossi & Figli", "indirizzo": "Via dell'Aquila <1>"},
        )
        school = admin_client.get("/api/schools").get_json()["schools"][0]
        assert school["nome"] == "Rossi & Figli"
        assert school["indirizzo"] == "Via dell'Aquila <1>"

        html = admin_client.get("/scuole").get_data(as_text=True)
        assert "Rossi &amp; Figli" in html
        assert "&amp;amp;" not in html
        assert "&lt;1&gt;" in html

    def test_school_requires_address(self, admin_client):
        response = admin_client.post("/api/schools", json={"nome": "Liceo Volta"})
        assert response.status_code == 400


class TestDashboardApi:
    def test_stats(self, trainer_client, material):
        stats = trainer_client.get("/api/dashboard/stats").get_json()["stats"]
        assert stats["totale_materiali"] == 1
        assert stats["totale_formatori"] == 1
        assert stats["formatori_attivi"][0]["nome"] == "Giulia Rossi"


class TestReporting:
    def _checkout(self, database, material, trainer):
        database.checkout_material_atomic(material["material_id"], trainer["trainer_id"])

    def test_export_csv(self, admin_client, database, material, trainer):
        self._checkout(database, material, trainer)
        response = admin_client.get("/api/admin/export")
        assert response.status_code == 200
        assert response.mimetype == "text/csv"

        rows = list(csv.reader(io.StringIO(response.data.decode("utf-8"))))
        assert rows[0][:4] == ["ID", "Materiale", "Formatore", "Tipo"]
        assert rows[1][1:5] == ["Arduino Uno", "Giulia Rossi", "prelievo", "1"]

    def test_export_xlsx(self, admin_client, database, material, trainer):
        self._checkout(database, material, trainer)
        response = admin_client.get("/api/admin/export?format=xlsx")
        assert response.status_code == 200

        wb = openpyxl.load_workbook(io.BytesIO(response.data))
        ws = wb["Movimenti"]
        assert ws.max_row == 2
        assert ws.cell(row=2, column=2).value == "Arduino Uno"

    def test_export_bad_date(self, admin_client):
        response = admin_client.get("/api/admin/export?start_date=ieri")
        assert response.status_code == 400

    def test_export_admin_only(self, trainer_client):
        assert trainer_client.get("/api/admin/export").status_code == 403

    def test_stock_alert(self, admin_client, database):
        database.create_material(
            {"nome": "Filamento PLA", "quantita_disponibile": 1, "soglia_minima": 5}
        )
        with mail.record_messages() as outbox:
            response = admin_client.post(
                "/api/admin/send_stock_alert", json={"email": "lab@scuola.it"}
            )
        assert response.status_code == 200
        assert response.get_json()["count"] == 1
        assert len(outbox) == 1
        assert outbox[0].subject == "[FabLab] Materiali sotto soglia"
        assert "Filamento PLA" in outbox[0].body

    def test_stock_alert_nothing_to_report(self, admin_client, material):
        response = admin_client.post(
            "/api/admin/send_stock_alert", json={"email": "lab@scuola.it"}
        )
        assert response.status_code == 400

    def test_stock_alert_invalid_email(self, admin_client):
        response = admin_client.post("/api/admin/send_stock_alert", json={"email": "lab"})
        assert response.status_code == 400
