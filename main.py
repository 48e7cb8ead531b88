# main.py — exam service entry point, BASE_PATH-aware (psycopg3 + pooling)
# Identity comes from the signed session cookie set by auth.py.

import os
from contextlib import contextmanager
from urllib.parse import urlparse, parse_qs, unquote
from typing import Optional

from flask import Flask, g, jsonify, session

# Database (psycopg 3)
from psycopg_pool import ConnectionPool
from psycopg.rows import dict_row

from admin import create_admin_blueprint
from auth import create_auth_blueprint
from exam import create_exam_blueprint
from schema import ensure_schema

# =============================================================================
# BASE_PATH & Flask app
# =============================================================================
BASE_PATH = (os.getenv("BASE_PATH", "") or "").rstrip("/")

app = Flask(__name__)
app.url_map.strict_slashes = False
app.secret_key = os.getenv("SECRET_KEY", "dev-secret")
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SECURE=os.getenv("SESSION_COOKIE_SECURE", "1").lower() in {"1", "true", "yes"},
)

AUTO_CREATE_SCHEMA = os.getenv("AUTO_CREATE_SCHEMA", "1").lower() in {"1", "true", "yes"}

if app.secret_key == "dev-secret":
    print("[Auth] SECRET_KEY not set; using the development key.", flush=True)

# =============================================================================
# DB configuration
# =============================================================================
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_URL_LOCAL = os.getenv("DATABASE_URL_LOCAL")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT")
DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS") or os.getenv("DB_PASSWORD")  # support either name
DB_NAME = os.getenv("DB_NAME")
INSTANCE_CONNECTION_NAME = os.getenv("INSTANCE_CONNECTION_NAME")
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "6"))
FORCE_TCP = os.getenv("FORCE_TCP", "").lower() in {"1", "true", "yes"}


def _on_managed_runtime() -> bool:
    # Cloud Run / App Engine
    return bool(os.getenv("K_SERVICE")) or os.getenv("GAE_ENV", "").startswith("standard")


def _log_choice(kwargs: dict, origin: str):
    host = kwargs.get("host", "localhost")
    if isinstance(host, str) and host.startswith("/"):
        print(f"[DB] {origin}: Unix socket -> {host}")
    else:
        print(f"[DB] {origin}: TCP -> {host}:{kwargs.get('port', 5432)}")


def _parse_database_url(url: str) -> dict:
    if not url:
        raise ValueError("Empty DATABASE_URL")
    # SQLAlchemy-style driver suffixes are accepted and dropped
    scheme, rest = url.split("://", 1) if "://" in url else ("", url)
    scheme = scheme.split("+", 1)[0]
    if scheme not in ("postgresql", "postgres"):
        raise ValueError(f"Unsupported scheme '{scheme}'")

    p = urlparse(f"postgresql://{rest}")
    qs = parse_qs(p.query or "", keep_blank_values=True)
    host = (qs.get("host") or [p.hostname])[0]
    dbname = (p.path or "").lstrip("/") or (qs.get("dbname") or [""])[0]
    if not dbname:
        raise ValueError("DATABASE_URL missing dbname")

    kwargs = {
        "dbname": dbname,
        "user": unquote(p.username or ""),
        "password": unquote(p.password or ""),
        "connect_timeout": 10,
    }
    if host:
        kwargs["host"] = host
    if p.port and not (isinstance(host, str) and host.startswith("/")):
        kwargs["port"] = p.port
    if qs.get("sslmode"):
        kwargs["sslmode"] = qs["sslmode"][0]
    return kwargs


def _component_kwargs(force_tcp: bool = False) -> dict:
    if not all([DB_NAME, DB_USER, DB_PASS]):
        raise RuntimeError("Set DATABASE_URL, or DB_NAME, DB_USER and DB_PASS.")
    kwargs = {"dbname": DB_NAME, "user": DB_USER, "password": DB_PASS, "connect_timeout": 10}
    if not force_tcp and _on_managed_runtime() and INSTANCE_CONNECTION_NAME:
        kwargs["host"] = f"/cloudsql/{INSTANCE_CONNECTION_NAME}"
    else:
        kwargs["host"] = DB_HOST or "127.0.0.1"
        kwargs["port"] = int(DB_PORT or "5432")
    return kwargs


def _connection_kwargs() -> dict:
    managed = _on_managed_runtime()
    if FORCE_TCP and not managed:
        kwargs = _component_kwargs(force_tcp=True)
        _log_choice(kwargs, "FORCE_TCP")
        return kwargs

    urls = [("DATABASE_URL_LOCAL", DATABASE_URL_LOCAL)] if not managed else []
    urls.append(("DATABASE_URL", DATABASE_URL))
    for label, url in urls:
        if not url:
            continue
        try:
            kwargs = _parse_database_url(url)
        except ValueError as e:
            print(f"[DB] Ignoring {label}: {e}")
            continue
        host = kwargs.get("host")
        if not managed and isinstance(host, str) and host.startswith("/cloudsql/"):
            print(f"[DB] {label} targets /cloudsql/ but we are local; skipping.")
            continue
        _log_choice(kwargs, f"Using {label}")
        return kwargs

    kwargs = _component_kwargs()
    _log_choice(kwargs, "Managed runtime" if managed else "Local dev")
    return kwargs


# =============================================================================
# psycopg3 Connection Pool + helpers
# =============================================================================
_pg_pool: Optional[ConnectionPool] = None


def _to_conninfo(kwargs: dict) -> str:
    parts = []
    for k, v in kwargs.items():
        if v is None:
            continue
        s = str(v)
        if not s or any(ch.isspace() for ch in s) or "'" in s or "\\" in s:
            s = "'" + s.replace("\\", "\\\\").replace("'", "\\'") + "'"
        parts.append(f"{k}={s}")
    return " ".join(parts)


def init_pool():
    global _pg_pool
    if _pg_pool is not None:
        return
    _pg_pool = ConnectionPool(conninfo=_to_conninfo(_connection_kwargs()),
                              min_size=1, max_size=DB_POOL_MAX, open=True)


@contextmanager
def get_conn():
    if _pg_pool is None:
        init_pool()
    with _pg_pool.connection() as conn:
        yield conn


def fetch_all(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            return cur.fetchall()


def fetch_one(q, params=None):
    rows = fetch_all(q, params)
    return rows[0] if rows else None


def execute(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
        conn.commit()


def execute_returning(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            rows = cur.fetchall()
        conn.commit()
        return rows


# =============================================================================
# Schema bootstrap (AUTO_CREATE_SCHEMA) + identity
# =============================================================================
_schema_ready = not AUTO_CREATE_SCHEMA


@app.before_request
def attach_identity():
    global _schema_ready
    if not _schema_ready:
        _schema_ready = ensure_schema(execute)

    user = session.get("user")
    if not isinstance(user, dict):
        return
    g.user_id = user.get("id")
    g.user_email = user.get("email")
    g.user_role = user.get("role")


@app.get("/healthz")
def healthz():
    try:
        row = fetch_one("SELECT 1 AS ok;")
        ok = bool(row and row.get("ok") == 1)
        return ("ok" if ok else "db-fail", 200 if ok else 500)
    except Exception as e:
        return (f"error: {e}", 500)


@app.errorhandler(404)
def not_found(_e):
    return jsonify({"success": False, "error": "not_found", "message": "Not found"}), 404


@app.errorhandler(405)
def method_not_allowed(_e):
    return jsonify({"success": False, "error": "method_not_allowed", "message": "Method not allowed"}), 405


# =============================================================================
# Blueprints
# =============================================================================
_db_deps = {
    "fetch_one": fetch_one,
    "fetch_all": fetch_all,
    "execute": execute,
    "execute_returning": execute_returning,
}
app.register_blueprint(create_auth_blueprint("", _db_deps, name="auth"))
app.register_blueprint(create_admin_blueprint("", _db_deps, name="admin"))
app.register_blueprint(create_exam_blueprint("", _db_deps, name="exam"))
if BASE_PATH:
    app.register_blueprint(create_auth_blueprint(BASE_PATH, _db_deps, name="auth_alias"))
    app.register_blueprint(create_admin_blueprint(BASE_PATH, _db_deps, name="admin_alias"))
    app.register_blueprint(create_exam_blueprint(BASE_PATH, _db_deps, name="exam_alias"))

# =============================================================================
# Local dev entry
# =============================================================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=True)
