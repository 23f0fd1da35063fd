"""
BLOCKSTAKE — Player Game API

Flask blueprint: /api/game/*

    POST /start             {bet_amount, skill_level?, is_demo?}  → session + max_score
    POST /complete          {session_id, score}                   → payout outcome
    POST /abandon           {session_id}                          → bet refunded, slot freed
    GET  /jackpot                                                 → pool state
    GET  /wallet                                                  → balance + recent tx
    POST /wallet/deposit    {amount}                              → new balance

Player identity comes from the Flask session (session["user"]["id"]).
Demo games work without a signed-in player.
"""

import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session

from tools.economics_errors import EconomicsError

logger = logging.getLogger("blockstake.api")

game_bp = Blueprint("game", __name__, url_prefix="/api/game")


def _get_engine():
    return current_app.config["ENGINE"]


def _player_id():
    return session.get("user", {}).get("id")


def player_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not _player_id():
            return jsonify({"error": "login required", "code": "unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated


@game_bp.errorhandler(EconomicsError)
def _economics_error(e):
    if e.http_status >= 500:
        logger.warning(f"{request.path}: {e.code}: {e}")
    return jsonify(e.to_dict()), e.http_status


def _truthy(v) -> bool:
    return v is True or str(v).lower() in ("1", "true", "yes")


@game_bp.route("/start", methods=["POST"])
def api_start_game():
    data = request.get_json(silent=True) or {}
    is_demo = _truthy(data.get("is_demo", False))
    user_id = _player_id()
    if not is_demo and not user_id:
        return jsonify({"error": "login required", "code": "unauthorized"}), 401

    game = _get_engine().start_game(
        user_id,
        bet_amount=data.get("bet_amount"),
        skill_level=data.get("skill_level", 5),
        is_demo=is_demo,
    )
    return jsonify({
        "ok": True,
        "session_id": game.id,
        "is_demo": game.is_demo,
        "bet_amount": game.bet_amount,
        "max_score": game.max_score,
        "win_multiplier": game.slot.win_multiplier,
    })


@game_bp.route("/complete", methods=["POST"])
def api_complete_game():
    data = request.get_json(silent=True) or {}
    session_id = str(data.get("session_id") or "")
    if not session_id:
        return jsonify({"error": "session_id is required", "code": "invalid_input",
                        "retryable": False}), 400
    engine = _get_engine()
    if session_id.startswith("demo-"):
        outcome = engine.complete_game(session_id, data.get("score"))
    else:
        user_id = _player_id()
        if not user_id:
            return jsonify({"error": "login required", "code": "unauthorized"}), 401
        outcome = engine.complete_game(session_id, data.get("score"), user_id=user_id)
    return jsonify({"ok": True, **outcome.to_dict()})


@game_bp.route("/abandon", methods=["POST"])
@player_required
def api_abandon_game():
    data = request.get_json(silent=True) or {}
    session_id = str(data.get("session_id") or "")
    if not session_id:
        return jsonify({"error": "session_id is required", "code": "invalid_input",
                        "retryable": False}), 400
    result = _get_engine().abandon_game(session_id, user_id=_player_id())
    return jsonify({"ok": True, **result})


@game_bp.route("/jackpot")
def api_jackpot():
    pool = _get_engine().get_jackpot()
    return jsonify({
        "current_amount": pool.current_amount,
        "last_win_amount": pool.last_win_amount,
        "last_win_date": pool.last_win_date,
    })


@game_bp.route("/wallet")
@player_required
def api_wallet():
    return jsonify(_get_engine().get_wallet(_player_id()))


@game_bp.route("/wallet/deposit", methods=["POST"])
@player_required
def api_deposit():
    data = request.get_json(silent=True) or {}
    balance = _get_engine().deposit(_player_id(), data.get("amount"))
    return jsonify({"ok": True, "balance": balance})
