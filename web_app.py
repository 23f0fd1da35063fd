"""
BLOCKSTAKE — Play-for-Money Tetris Backend
Web entry point: player game API + operator console.

    gunicorn "web_app:create_app()"
    python web_app.py               # local dev on :5000
"""
import logging
import os
import secrets
from datetime import timedelta
from pathlib import Path

from flask import Flask, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from config.settings import AdminConfig, EngineConfig

# ── Structured logging ──
logging.basicConfig(
    level=getattr(logging, EngineConfig.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("blockstake")


# ── Stable SECRET_KEY: survives process restarts and gunicorn recycling ──
# Priority: env var → persisted file → generate-and-save
def _get_or_create_secret_key():
    if AdminConfig.SECRET_KEY:
        return AdminConfig.SECRET_KEY
    key_file = Path(EngineConfig.DB_PATH).parent / ".flask_secret_key"
    try:
        if key_file.exists():
            stored = key_file.read_text().strip()
            if len(stored) >= 32:
                return stored
    except OSError:
        pass
    new_key = secrets.token_hex(32)
    try:
        key_file.parent.mkdir(parents=True, exist_ok=True)
        key_file.write_text(new_key)
    except OSError:
        logger.warning("Could not persist secret key; sessions end on restart")
    return new_key


def create_app(target: str = None, engine=None, config: dict = None) -> Flask:
    """Build the Flask app around one EconomicsEngine."""
    from tools.economics_engine import EconomicsEngine
    from admin import admin_bp
    from api.game_routes import game_bp

    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=30)
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["MAX_CONTENT_LENGTH"] = 1 * 1024 * 1024
    app.config["ADMIN_EMAIL"] = AdminConfig.ADMIN_EMAIL
    if config:
        app.config.update(config)
    if not app.secret_key:
        app.secret_key = _get_or_create_secret_key()

    app.config["ENGINE"] = engine or EconomicsEngine(target)

    app.register_blueprint(game_bp)
    app.register_blueprint(admin_bp)
    logger.info("Registered /api/game and /admin blueprints")

    @app.before_request
    def _csrf_origin_check():
        """Reject cross-origin POSTs (SameSite=Lax covers the rest)."""
        if request.method in ("POST", "PUT", "DELETE"):
            origin = request.headers.get("Origin") or request.headers.get("Referer", "")
            if origin:
                from urllib.parse import urlparse
                allowed = request.host_url.rstrip("/")
                incoming = f"{urlparse(origin).scheme}://{urlparse(origin).netloc}"
                if incoming and incoming != allowed:
                    return jsonify({"error": "cross-origin request blocked", "code": "forbidden"}), 403

    @app.route("/health")
    def health():
        active = app.config["ENGINE"].get_active_batch()
        return jsonify({"ok": True, "active_batch": active.id if active else None})

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    create_app().run(host="0.0.0.0", port=port, debug=False)
