"""
Configuration management for the FabLab inventory and scheduling dashboard
"""

import os
import sys
from datetime import timedelta
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration"""

    # SECRET_KEY is required - fail if not set in production
    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        # Allow default only in development
        if os.getenv("FLASK_ENV", "development") == "production":
            print("ERROR: SECRET_KEY must be set in production environment!")
            print(
                "Generate a secure key with: python -c 'import secrets; print(secrets.token_hex(32))'"
            )
            sys.exit(1)
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", "postgresql://localhost/fablab"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 8 * 1024 * 1024  # camera frames only
    ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg"}

    # Session Security Settings
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = timedelta(hours=12)

    # Rate limiting (Flask-Limiter)
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # Mail (Flask-Mail)
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "True").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", MAIL_USERNAME)
    MAIL_SENDER_NAME = os.getenv("MAIL_SENDER_NAME", "FabLab InnovAction")

    # Scanner
    SCAN_BUFFER_SECONDS = int(os.getenv("SCAN_BUFFER_SECONDS", "5"))
    MAX_EXPORT_RECORDS = int(os.getenv("MAX_EXPORT_RECORDS", "10000"))
    DEFAULT_SOGLIA_MINIMA = 5
    LEADERBOARD_SIZE = 5
    LOCAL_TIMEZONE = os.getenv("LOCAL_TIMEZONE", "Europe/Rome")


class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    FLASK_ENV = "development"
    # Allow non-HTTPS in development
    SESSION_COOKIE_SECURE = False


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    FLASK_ENV = "production"
    SESSION_COOKIE_SECURE = True  # Only send cookie over HTTPS


class TestingConfig(Config):
    """Testing configuration (in-memory SQLite, no CSRF, no rate limits)"""

    DEBUG = False
    TESTING = True
    FLASK_ENV = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    MAIL_USERNAME = "fablab@example.org"
    MAIL_DEFAULT_SENDER = "fablab@example.org"
    SESSION_COOKIE_SECURE = False


# Configuration dictionary
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}


def get_config():
    """Get configuration based on environment"""
    env = os.getenv("FLASK_ENV", "development")
    return config.get(env, config["default"])
