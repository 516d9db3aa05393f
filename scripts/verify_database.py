#!/usr/bin/env python3
"""
FabLab Database Verification Script
Verifies data integrity after migration
"""

import os
import sys
from datetime import datetime
from dotenv import load_dotenv

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables
load_dotenv()

# Import database models
from utils.models import db, Material, Trainer, Activity, Movement
from config import get_config


# Colors for terminal output
class Colors:
    GREEN = "\033[0;32m"
    RED = "\033[0;31m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    NC = "\033[0m"  # No Color


def print_success(message):
    print(f"{Colors.GREEN}✓ {message}{Colors.NC}")


def print_error(message):
    print(f"{Colors.RED}✗ {message}{Colors.NC}")


def print_warning(message):
    print(f"{Colors.YELLOW}⚠  {message}{Colors.NC}")


def print_info(message):
    print(f"{Colors.BLUE}{message}{Colors.NC}")


def check_orphans(title, sql, errors):
    """Run a LEFT JOIN orphan query and report dangling references"""
    print_info(title)
    try:
        orphaned = db.session.execute(db.text(sql)).fetchall()
        if orphaned:
            print_error(f"Found {len(orphaned)} rows with invalid references")
            errors.append(title)
        else:
            print_success("All references are valid")
    except Exception as e:
        print_error(f"Failed to check references: {e}")
        errors.append(f"{title} failed")
    print()


def verify_database():
    """Main verification function"""

    print_info("=" * 50)
    print_info("  FabLab Database Verification")
    print_info("=" * 50)
    print()

    # Create Flask app context
    from flask import Flask

    app = Flask(__name__)
    app.config.from_object(get_config())
    db.init_app(app)

    errors = []
    warnings = []

    with app.app_context():
        # Test 1: Database connection
        print_info("Test 1: Database Connection")
        try:
            db.session.execute(db.text("SELECT 1"))
            print_success("Database connection successful")
        except Exception as e:
            print_error(f"Database connection failed: {e}")
            return False
        print()

        # Test 2: Table existence
        print_info("Test 2: Table Existence")
        tables = [
            "profiles",
            "materials",
            "trainers",
            "schools",
            "activities",
            "movements",
            "consumptions",
        ]
        for table in tables:
            try:
                result = db.session.execute(db.text(f"SELECT COUNT(*) FROM {table}"))
                count = result.scalar()
                print_success(f"Table '{table}' exists ({count} records)")
            except Exception as e:
                print_error(f"Table '{table}' missing or inaccessible: {e}")
                errors.append(f"Missing table: {table}")
        print()

        # Test 3: Record counts
        print_info("Test 3: Record Counts")
        try:
            material_count = db.session.query(Material).count()
            trainer_count = db.session.query(Trainer).count()
            activity_count = db.session.query(Activity).count()

            print_success(f"Materials: {material_count}")
            print_success(f"Trainers: {trainer_count}")
            print_success(f"Activities: {activity_count}")

            if material_count == 0:
                warnings.append("No materials in database")
            if trainer_count == 0:
                warnings.append("No trainers in database")

        except Exception as e:
            print_error(f"Failed to count records: {e}")
            errors.append("Record count failed")
        print()

        # Test 4: QR code uniqueness
        print_info("Test 4: QR Code Uniqueness")
        try:
            duplicates = db.session.execute(
                db.text("""
                SELECT qr_code, COUNT(*) as count
                FROM materials
                GROUP BY qr_code
                HAVING COUNT(*) > 1
            """)
            ).fetchall()

            if duplicates:
                print_error(f"Found {len(duplicates)} duplicate QR codes")
                for dup in duplicates:
                    print(f"  - QR '{dup[0]}' appears {dup[1]} times")
                errors.append("Duplicate QR codes")
            else:
                print_success("All material QR codes are unique")
        except Exception as e:
            print_error(f"Failed to check QR code uniqueness: {e}")
            errors.append("QR code check failed")
        print()

        # Test 5: Stock never negative
        print_info("Test 5: Non-negative Stock")
        try:
            negative = db.session.execute(
                db.text("""
                SELECT COUNT(*) FROM materials
                WHERE quantita_disponibile < 0 OR soglia_minima < 0
            """)
            ).scalar()

            if negative:
                print_error(f"Found {negative} materials with negative quantities")
                errors.append("Negative stock")
            else:
                print_success("All material quantities are non-negative")

            below = db.session.execute(
                db.text("""
                SELECT COUNT(*) FROM materials
                WHERE quantita_disponibile <= soglia_minima
            """)
            ).scalar()
            if below:
                warnings.append(f"{below} materials at or below minimum threshold")
        except Exception as e:
            print_error(f"Failed to check stock: {e}")
            errors.append("Stock check failed")
        print()

        check_orphans(
            "Test 6: Foreign Key Integrity (Movements → Materials)",
            """
            SELECT m.id FROM movements m
            LEFT JOIN materials mt ON m.materiale_id = mt.id
            WHERE mt.id IS NULL
            """,
            errors,
        )
        check_orphans(
            "Test 7: Foreign Key Integrity (Movements → Trainers)",
            """
            SELECT m.id FROM movements m
            LEFT JOIN trainers t ON m.formatore_id = t.id
            WHERE t.id IS NULL
            """,
            errors,
        )
        check_orphans(
            "Test 8: Foreign Key Integrity (Activities → Schools)",
            """
            SELECT a.id FROM activities a
            LEFT JOIN schools s ON a.scuola_id = s.id
            WHERE a.scuola_id IS NOT NULL AND s.id IS NULL
            """,
            errors,
        )

        # Test 9: Timestamp Format Check
        print_info("Test 9: Timestamp Format Check")
        try:
            sample_movements = db.session.query(Movement).limit(5).all()
            for movement in sample_movements:
                if not isinstance(movement.created_at, datetime):
                    print_error(f"Movement {movement.id} has invalid created_at")
                    errors.append("Invalid timestamp format")
                    break
            else:
                print_success("Movement timestamps are valid")
        except Exception as e:
            print_error(f"Failed to check timestamps: {e}")
            errors.append("Timestamp check failed")
        print()

    # Summary
    print_info("=" * 50)
    print_info("  Verification Summary")
    print_info("=" * 50)
    print()

    if errors:
        print_error(f"Found {len(errors)} critical errors:")
        for error in errors:
            print(f"  • {error}")
        print()

    if warnings:
        print_warning(f"Found {len(warnings)} warnings:")
        for warning in warnings:
            print(f"  • {warning}")
        print()

    if not errors and not warnings:
        print_success("All verification tests passed!")
        print()
        return True
    elif not errors:
        print_warning("Verification passed with warnings")
        print()
        return True
    else:
        print_error("Verification failed - please fix errors above")
        print()
        return False


if __name__ == "__main__":
    success = verify_database()
    sys.exit(0 if success else 1)
