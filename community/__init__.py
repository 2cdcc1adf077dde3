"""
Flask application factory for the community moderation service.

Wires config, both rate limiters (Flask-Limiter per IP for the public check
endpoint, the action limiter per user for admin endpoints), the moderation
store, blueprints and CLI commands. Moderation logic itself lives in
community.services.
"""

from __future__ import annotations
import os
from flask import Flask, Response, jsonify
from flask_wtf.csrf import CSRFError
from dotenv import load_dotenv
from .extensions import limiter, csrf, init_moderation
from .routes.api import api_bp
from .routes.admin import admin_bp
from .services import supabase_client
from .services.rate_limiter import STRATEGIES
from .utils.auth import bearer_token
from . import cli

MIN_SECRET_KEY_LEN = 32


def _production_problems(app: Flask) -> list:
    """Settings that must not reach production, as human-readable problems."""
    problems = []
    secret_key = app.config.get("SECRET_KEY") or ""

    if not app.config.get("SESSION_COOKIE_SECURE", False):
        problems.append("SESSION_COOKIE_SECURE is off; session cookies would travel over plain HTTP.")
    if len(secret_key) < MIN_SECRET_KEY_LEN:
        problems.append(
            f"FLASK_SECRET_KEY must be at least {MIN_SECRET_KEY_LEN} characters "
            f"(got {len(secret_key)}). Generate one with secrets.token_hex(32)."
        )
    if app.config.get("DEBUG", False):
        problems.append("DEBUG is on.")
    for key in ("MODERATION_BACKEND", "RATE_LIMIT_BACKEND"):
        if app.config.get(key) == "memory":
            problems.append(f"{key}=memory keeps rules/counters per worker; use 'supabase'.")
    if not app.config.get("RATE_LIMIT_FAIL_OPEN", True):
        app.logger.warning("RATE_LIMIT_FAIL_OPEN is off: admin actions are rejected while the counter store is down.")
    return problems


def _check_production_config(app: Flask, cfg_path: str) -> None:
    """Refuse to start ProdConfig with insecure or per-process settings."""
    if "ProdConfig" not in cfg_path or app.config.get("TESTING", False):
        return

    problems = _production_problems(app)
    if problems:
        raise RuntimeError(
            "Refusing to start with the production config:\n"
            + "\n".join(f"  - {p}" for p in problems)
        )
    app.logger.info("Production configuration checks passed")


def create_app() -> Flask:
    # .env is for local development; real deployments set the environment
    load_dotenv(override=True)

    app = Flask(__name__)

    cfg_path = os.getenv("APP_CONFIG", "community.config.ProdConfig")
    try:
        app.config.from_object(cfg_path)
    except (ImportError, AttributeError) as e:
        app.logger.warning(f"Config object {cfg_path} not found, using Flask defaults: {e}")

    _check_production_config(app, cfg_path)

    strategy = app.config.get("RATE_LIMIT_STRATEGY", "fixed")
    if strategy not in STRATEGIES:
        raise RuntimeError(f"RATE_LIMIT_STRATEGY must be one of {', '.join(STRATEGIES)}, got {strategy!r}")

    app.secret_key = app.secret_key or app.config.get("SECRET_KEY", "")

    limiter.init_app(app)
    limiter.enabled = app.config.get("RATELIMIT_ENABLED", True)

    csrf.init_app(app)

    @app.before_request
    def protect_session_writes():
        # Only cookie-session callers need a token
        if not app.config.get("WTF_CSRF_ENABLED", True) or bearer_token():
            return None
        csrf.protect()
        return None

    @app.errorhandler(CSRFError)
    def csrf_failed(e):
        app.logger.warning(f"CSRF check failed: {e.description}")
        return jsonify({"success": False, "error": "CSRF token missing or invalid"}), 400

    supabase_client.init_supabase(app)
    init_moderation(app)

    @app.after_request
    def add_security_headers(resp: Response) -> Response:
        # JSON only: nothing here should ever be framed or run scripts
        resp.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        return resp

    app.register_blueprint(api_bp, url_prefix="/api/v1")
    app.register_blueprint(admin_bp)

    for command in (
        cli.init_moderation_rules_command,
        cli.cleanup_rate_limits_command,
        cli.reset_rate_limit_command,
    ):
        app.cli.add_command(command)

    return app
