# auth.py
# -----------------------------------------------------------------------------
# Sign-up / sign-in for exam takers, env-configured admin sign-in.
# Identity lives in the signed Flask session: session["user"] = {id, email, role}
# main.before_request copies it onto g.user_id / g.user_email / g.user_role.
# -----------------------------------------------------------------------------

import hmac
import os
from typing import Any, Callable, Dict

from flask import Blueprint, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

SIGNUP_FIELDS = ("name", "email", "phoneNumber", "password")


def create_auth_blueprint(base_path: str, deps: Dict[str, Any], name: str = "auth") -> Blueprint:
    """
    /api/user/signup|signin|logout and /api/admin/signin|logout.
    deps: fetch_one, execute_returning
    ADMIN_EMAIL / ADMIN_PASSWORD are read per request so tests can monkeypatch the env.
    """
    bp = Blueprint(name, __name__, url_prefix=(base_path or None))

    fetch_one: Callable = deps["fetch_one"]
    execute_returning: Callable = deps["execute_returning"]

    def _error(status: int, code: str, message: str):
        return jsonify({"success": False, "error": code, "message": message}), status

    def _body() -> Dict[str, Any]:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    # ---------------------------- users ----------------------------
    @bp.post("/api/user/signup")
    def signup():
        data = _body()
        values = {k: str(data.get(k) or "").strip() for k in SIGNUP_FIELDS}
        if not all(values.values()):
            return _error(400, "missing_fields", "Please fill all the fields")
        email = values["email"].lower()

        existing = fetch_one("SELECT id FROM public.users WHERE lower(email) = %s;", (email,))
        if existing:
            return _error(409, "user_exists", "User already exists")

        try:
            rows = execute_returning("""
                INSERT INTO public.users (name, email, phone_number, password_hash)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (email) DO NOTHING
                RETURNING id;
            """, (values["name"], email, values["phoneNumber"], generate_password_hash(values["password"])))
        except Exception as e:
            print(f"[auth] signup failed for {email}: {e}")
            return _error(500, "server_error", "Server Error")
        if not rows:
            return _error(409, "user_exists", "User already exists")

        print(f"[auth] new user id={rows[0]['id']}")
        return jsonify({"success": True, "message": "User registered successfully",
                        "data": {"userId": rows[0]["id"], "email": email}}), 201

    @bp.post("/api/user/signin")
    def signin():
        data = _body()
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")
        if not email or not password:
            return _error(400, "missing_fields", "Please provide email and password")

        user = fetch_one("""
            SELECT id, email, password_hash
              FROM public.users
             WHERE lower(email) = %s;
        """, (email,))
        if not user:
            return _error(404, "user_not_found", "Email not found")
        if not check_password_hash(user["password_hash"], password):
            return _error(401, "invalid_credentials", "Invalid credentials")

        session.clear()
        session["user"] = {"id": user["id"], "email": user["email"], "role": "user"}
        return jsonify({"success": True, "message": "User signed in successfully",
                        "data": {"userId": user["id"], "email": user["email"]}})

    @bp.post("/api/user/logout")
    def logout():
        session.pop("user", None)
        return jsonify({"success": True, "message": "Logged out successfully"})

    # ---------------------------- admin ----------------------------
    @bp.post("/api/admin/signin")
    def admin_signin():
        data = _body()
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")
        admin_email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        admin_password = os.getenv("ADMIN_PASSWORD") or ""

        if not admin_email or not admin_password:
            print("[auth] admin sign-in attempted but ADMIN_EMAIL/ADMIN_PASSWORD are not set")
            return _error(503, "admin_disabled", "Admin sign-in is not configured")
        if not email or not password:
            return _error(400, "missing_fields", "Please provide email and password")
        if not (hmac.compare_digest(email, admin_email)
                and hmac.compare_digest(password.encode(), admin_password.encode())):
            return _error(401, "invalid_credentials", "Invalid credentials")

        session.clear()
        session["user"] = {"id": None, "email": admin_email, "role": "admin"}
        return jsonify({"success": True, "message": "Admin signed in successfully",
                        "data": {"email": admin_email}})

    @bp.post("/api/admin/logout")
    def admin_logout():
        session.pop("user", None)
        return jsonify({"success": True, "message": "Logged out successfully"})

    return bp
