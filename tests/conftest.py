"""
Pytest configuration and fixtures for the FabLab dashboard
"""

import os
import sys
from datetime import date, time

import pytest

# Add the parent directory to the path so we can import the app
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Testing config: in-memory SQLite, no CSRF, no rate limits, mail suppressed
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from app import database as _database  # noqa: E402
from utils.models import db as _db  # noqa: E402
from utils.qr_handler import scan_buffer  # noqa: E402

ADMIN_EMAIL = "admin@fablab.test"
TRAINER_EMAIL = "giulia@fablab.test"
PASSWORD = "password123"


@pytest.fixture(scope="function")
def app():
    """Flask application with a fresh schema per test"""
    with flask_app.app_context():
        _db.create_all()
        scan_buffer.clear()
        yield flask_app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope="function")
def database(app):
    return _database


@pytest.fixture(scope="function")
def client(app):
    """Create Flask test client"""
    return app.test_client()


@pytest.fixture(scope="function")
def admin(database):
    return database.create_profile(
        {
            "nome": "Admin",
            "cognome": "FabLab",
            "email": ADMIN_EMAIL,
            "password": PASSWORD,
            "role": "amministratore",
        }
    )


@pytest.fixture(scope="function")
def trainer(database):
    """A formatore profile with its linked trainer record"""
    profile = database.create_profile(
        {
            "nome": "Giulia",
            "cognome": "Rossi",
            "email": TRAINER_EMAIL,
            "password": PASSWORD,
        }
    )
    return database.create_trainer({"user_id": profile["profile_id"]})


@pytest.fixture(scope="function")
def material(database):
    return database.create_material(
        {
            "nome": "Arduino Uno",
            "descrizione": "Scheda microcontrollore",
            "quantita_disponibile": 3,
            "soglia_minima": 1,
        }
    )


@pytest.fixture(scope="function")
def school(database):
    return database.create_school({"nome": "IIS Galilei", "indirizzo": "Via Roma 12"})


@pytest.fixture(scope="function")
def activity(database, school, trainer):
    return database.create_activity(
        {
            "titolo": "Introduzione ad Arduino",
            "data": date(2025, 3, 3),
            "orario": time(9, 0),
            "scuola_id": school["school_id"],
            "formatore_id": trainer["trainer_id"],
        }
    )


def login_user(client, email, password=PASSWORD):
    """Helper function to login a user"""
    return client.post("/api/auth/login", json={"email": email, "password": password})


@pytest.fixture(scope="function")
def admin_client(client, admin):
    """Test client logged in as amministratore"""
    response = login_user(client, ADMIN_EMAIL)
    assert response.status_code == 200
    return client


@pytest.fixture(scope="function")
def trainer_client(client, trainer):
    """Test client logged in as formatore"""
    response = login_user(client, TRAINER_EMAIL)
    assert response.status_code == 200
    return client
