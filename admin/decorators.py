"""
BLOCKSTAKE — Operator Console Decorators

Access control: only ADMIN_EMAIL can reach /admin/*.
Set ADMIN_EMAIL in .env or the deployment environment.

Sign-in is owned by the auth front end that shares this app's secret key;
it puts {"id", "email"} into session["user"]. Nothing here logs users in.
"""

import json
import logging
import uuid
from functools import wraps

from flask import current_app, jsonify, request, session

from config.settings import AdminConfig
from tools.economics_models import utcnow_iso

logger = logging.getLogger("blockstake.admin")


def _current_user():
    return session.get("user", {})


def _is_admin(user: dict) -> bool:
    if not user or not user.get("email"):
        return False
    admin_email = current_app.config.get("ADMIN_EMAIL", AdminConfig.ADMIN_EMAIL)
    if not admin_email:
        logger.warning("ADMIN_EMAIL not set — operator console locked")
        return False
    return user["email"].strip().lower() == admin_email.strip().lower()


def _wants_json() -> bool:
    return "/api/" in request.path


def admin_required(f):
    """Require an authenticated operator (email must match ADMIN_EMAIL)."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user = _current_user()
        if not user or not user.get("id"):
            if _wants_json():
                return jsonify({"error": "login required", "code": "unauthorized"}), 401
            return (
                '<div style="padding:40px;text-align:center;font-family:sans-serif">'
                '<h2>🔒 Operator Console</h2>'
                '<p style="color:#888">Sign in through the site first.</p></div>'
            ), 401
        if not _is_admin(user):
            if _wants_json():
                return jsonify({"error": "operator access only", "code": "forbidden"}), 403
            return (
                f'<div style="padding:40px;text-align:center;font-family:sans-serif">'
                f'<h2>🔒 Operator Console — Access Denied</h2>'
                f'<p style="color:#888">Your email ({user.get("email", "?")}) is not authorized.</p>'
                f'<a href="/" style="color:#7c6aef">← Back</a></div>'
            ), 403
        return f(*args, **kwargs)
    return decorated


def audit_log(action, target_type=None, target_id=None, details=None):
    """Record an operator action in admin_audit_log. Failures are logged only."""
    engine = current_app.config["ENGINE"]
    user = _current_user()
    try:
        with engine.store.transaction() as db:
            db.execute(
                "INSERT INTO admin_audit_log (id, admin_id, action, target_type, target_id, "
                "details, ip_address, created_at) VALUES (?,?,?,?,?,?,?,?)",
                (str(uuid.uuid4())[:12], user.get("id", "system"), action,
                 target_type, target_id,
                 json.dumps(details, default=str) if details else None,
                 request.remote_addr, utcnow_iso()),
            )
    except Exception as e:
        logger.warning(f"Audit log failed: {e}")


def recent_audit(limit: int = 20) -> list[dict]:
    engine = current_app.config["ENGINE"]
    with engine.store.reading() as db:
        return db.execute(
            "SELECT * FROM admin_audit_log ORDER BY created_at DESC LIMIT ?", (int(limit),)
        ).fetchall()
