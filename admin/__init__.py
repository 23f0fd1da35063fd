"""
BLOCKSTAKE — Operator Console

Flask blueprint: /admin/*
Pages: Batches (dashboard), Batch detail, Config
JSON APIs under /admin/api/* for batch generation, activation and config.
"""

from flask import Blueprint

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

from admin import routes  # noqa: E402, F401
