"""
Session authentication helpers
"""

import functools

from flask import jsonify, redirect, request, session, url_for


def _wants_html():
    return not request.path.startswith("/api/") and not request.is_json


def login_required(f):
    """
    Decorator that protects pages and API endpoints.
    Browsers are redirected to the login page, API clients get 401.
    """

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if session.get("user_id"):
            return f(*args, **kwargs)

        if _wants_html():
            return redirect(url_for("auth_page"))

        return jsonify({"success": False, "error": "Utente non autenticato"}), 401

    return decorated


def role_required(*roles):
    """Decorator restricting an endpoint to the given profile roles"""

    def wrapper(f):
        @functools.wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            if session.get("role") in roles:
                return f(*args, **kwargs)
            return jsonify({"success": False, "error": "Permesso negato"}), 403

        return decorated

    return wrapper


def current_user_id():
    return session.get("user_id")
