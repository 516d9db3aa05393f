#!/usr/bin/env python3
"""
Seed Database - Add Sample Data for Testing
Populates the database with an admin, trainers, schools, materials and activities
"""

import os
import sys
from datetime import date, time, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask
from config import get_config
from utils import DatabaseHandler
from utils.models import Material, Profile, School

DEFAULT_PASSWORD = os.getenv("SEED_PASSWORD", "fablab2024")


def create_app():
    """Create a minimal Flask app for database seeding"""
    app = Flask(__name__)
    app.config.from_object(get_config())
    database = DatabaseHandler(app)
    database.create_tables(app)
    return app, database


def seed_profiles(app, database):
    """Add the admin and sample trainers; returns trainer IDs by email"""
    print("\n  Adding profiles and trainers...")

    profiles = [
        {"nome": "Admin", "cognome": "FabLab", "email": "admin@fablab.local", "role": "amministratore"},
        {"nome": "Giulia", "cognome": "Rossi", "email": "giulia.rossi@fablab.local",
         "disponibilita": "Lun-Mer", "lezioni_concluse": 14, "ore_totali": 42},
        {"nome": "Marco", "cognome": "Bianchi", "email": "marco.bianchi@fablab.local",
         "disponibilita": "Gio-Ven", "lezioni_concluse": 9, "ore_totali": 27},
        {"nome": "Sara", "cognome": "Esposito", "email": "sara.esposito@fablab.local",
         "lezioni_concluse": 3, "ore_totali": 6},
    ]

    trainer_ids = {}
    with app.app_context():
        existing = {p.email for p in Profile.query.all()}
        for data in profiles:
            if data["email"] in existing:
                print(f"  SKIP {data['email']} already exists")
                continue
            try:
                if data.get("role") == "amministratore":
                    database.create_profile({**data, "password": DEFAULT_PASSWORD})
                else:
                    result = database.register_trainer({**data, "password": DEFAULT_PASSWORD})
                    trainer_ids[data["email"]] = result["trainer"]["trainer_id"]
                print(f"  OK   Created: {data['nome']} {data['cognome']} ({data.get('role', 'formatore')})")
            except Exception as e:
                print(f"  ERR  Error creating {data['email']}: {str(e)}")

    return trainer_ids


def seed_schools(app, database):
    """Add sample partner schools; returns school IDs"""
    print("\n  Adding schools...")

    schools = [
        {"nome": "IIS Galileo Galilei", "indirizzo": "Via Roma 12, Torino",
         "contatto": "011 555 0101", "email": "segreteria@galilei.example.it"},
        {"nome": "Liceo Scientifico Volta", "indirizzo": "Corso Italia 40, Milano",
         "contatto": "02 555 0202", "email": None},
        {"nome": "IC Leonardo da Vinci", "indirizzo": "Piazza Garibaldi 3, Bologna",
         "contatto": None, "email": "info@icdavinci.example.it"},
    ]

    school_ids = []
    with app.app_context():
        existing = {s.nome for s in School.query.all()}
        for data in schools:
            if data["nome"] in existing:
                print(f"  SKIP {data['nome']} already exists")
                continue
            school = database.create_school(data)
            school_ids.append(school["school_id"])
            print(f"  OK   Created: {data['nome']}")

    return school_ids


def seed_materials(app, database):
    """Add sample materials with generated QR identifiers"""
    print("\n  Adding materials...")

    materials = [
        {"nome": "Arduino Uno", "descrizione": "Scheda microcontrollore", "quantita_disponibile": 18, "soglia_minima": 5},
        {"nome": "Filamento PLA 1kg", "descrizione": "Bobina per stampa 3D", "quantita_disponibile": 4, "soglia_minima": 5},
        {"nome": "Compensato 3mm", "descrizione": "Pannello per taglio laser", "quantita_disponibile": 25, "soglia_minima": 10},
        {"nome": "Kit sensori", "descrizione": "37 sensori assortiti", "quantita_disponibile": 6, "soglia_minima": 3},
        {"nome": "Saldatore", "descrizione": None, "quantita_disponibile": 2, "soglia_minima": 2},
    ]

    with app.app_context():
        existing = {m.nome for m in Material.query.all()}
        for data in materials:
            if data["nome"] in existing:
                print(f"  SKIP {data['nome']} already exists")
                continue
            material = database.create_material(data)
            print(f"  OK   Created: {data['nome']} (QR: {material['qr_code']})")


def seed_activities(app, database, trainer_ids, school_ids):
    """Schedule a few activities around today"""
    print("\n  Adding activities...")
    if not trainer_ids or not school_ids:
        print("  SKIP no new trainers/schools to link")
        return

    trainers = list(trainer_ids.values())
    today = date.today()
    activities = [
        {"titolo": "Introduzione ad Arduino", "data": today, "orario": time(9, 0)},
        {"titolo": "Stampa 3D: dal modello all'oggetto", "data": today, "orario": time(14, 30)},
        {"titolo": "Taglio laser creativo", "data": today + timedelta(days=2), "orario": time(10, 0)},
        {"titolo": "Robotica educativa", "data": today - timedelta(days=3), "orario": time(11, 0), "stato": "conclusa"},
    ]

    with app.app_context():
        for i, data in enumerate(activities):
            data["scuola_id"] = school_ids[i % len(school_ids)]
            data["formatore_id"] = trainers[i % len(trainers)]
            activity = database.create_activity(data)
            print(f"  OK   Created: {activity['titolo']} ({activity['data']} {activity['orario']})")


def main():
    """Main function to seed database"""
    print("=" * 60)
    print("FabLab - Database Seeding Script")
    print("=" * 60)

    try:
        print("\nConnecting to database...")
        app, database = create_app()
        print("Connected successfully!")

        trainer_ids = seed_profiles(app, database)
        school_ids = seed_schools(app, database)
        seed_materials(app, database)
        seed_activities(app, database, trainer_ids, school_ids)

        print("\n" + "=" * 60)
        print("Database seeding completed successfully!")
        print("=" * 60)
        print(f"\nLogin: admin@fablab.local / {DEFAULT_PASSWORD}")
        print(f"Trainer: giulia.rossi@fablab.local / {DEFAULT_PASSWORD}")
        print("\nTesting instructions:")
        print("  1. Open application: http://localhost:5000")
        print("  2. Materiali -> Scarica QR, print or show it on a second screen")
        print("  3. Scanner QR -> Avvia Scanner, frame the code, click 'Prelievo'")
        print("  4. Without a camera (development): /debug/scan?code=<qr_code>")

    except Exception as e:
        print(f"\nError: {str(e)}")
        import traceback

        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
