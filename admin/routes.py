"""
BLOCKSTAKE — Operator Console Routes

Pages + JSON APIs for batch generation, activation, progress and the
economic config. Forms on the pages post to the same /admin/api/* routes
the JSON clients use; a form post gets a redirect back, a JSON post gets
JSON.
"""

from flask import current_app, jsonify, redirect, request, session

from admin import admin_bp
from admin.decorators import admin_required, audit_log, recent_audit
from tools.economics_errors import EconomicsError, InvalidInput

_esc = lambda s: str(s).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def _get_engine():
    return current_app.config["ENGINE"]


def _operator_id() -> str:
    return session.get("user", {}).get("id", "admin")


def _payload() -> dict:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _whole_number(value, field: str):
    """JSON ints, integral floats, or digit strings from the form. Anything else is rejected."""
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be a whole number (got {value!r})")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidInput(f"{field} must be a whole number (got {value!r})")
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidInput(f"{field} must be a whole number (got {value!r})")


def _done(body: dict, back: str, status: int = 200):
    if request.is_json:
        return jsonify(body), status
    return redirect(request.referrer or back)


@admin_bp.errorhandler(EconomicsError)
def _economics_error(e):
    if request.is_json or "/api/" in request.path:
        return jsonify(e.to_dict()), e.http_status
    return console_layout(f'<div class="alert alert-warn">{_esc(e)}</div>'
                          f'<a href="/admin/" class="btn btn-outline">← Back</a>', ""), e.http_status


# ═══════════════════════════════════════════════════════════
# Layout Shell
# ═══════════════════════════════════════════════════════════

CONSOLE_CSS = """
<style>
*{margin:0;padding:0;box-sizing:border-box}
:root{--bg:#0a0b10;--surface:#12131a;--card:#1a1b25;--border:#252636;--accent:#7c6aef;
--success:#22c55e;--danger:#ef4444;--warn:#f59e0b;--text:#e2e8f0;--dim:#94a3b8;
--radius:8px;--mono:'JetBrains Mono',monospace}
body{font-family:'Inter',-apple-system,sans-serif;background:var(--bg);color:var(--text);min-height:100vh}
.shell{display:flex;min-height:100vh}
.side{width:200px;background:var(--surface);border-right:1px solid var(--border);padding:16px 0;position:fixed;top:0;bottom:0}
.side .logo{padding:12px 20px;font-size:15px;font-weight:800;color:var(--accent);border-bottom:1px solid var(--border);margin-bottom:8px}
.side a{display:block;padding:10px 20px;font-size:12px;color:var(--dim);text-decoration:none}
.side a:hover{color:var(--text)}
.side a.active{background:rgba(124,106,239,.15);color:var(--accent);font-weight:600;border-right:2px solid var(--accent)}
.main{margin-left:200px;flex:1;padding:24px 32px;max-width:1300px}
.page-title{font-size:22px;font-weight:800;margin-bottom:4px}
.page-sub{font-size:12px;color:var(--dim);margin-bottom:24px}
.card{background:var(--card);border:1px solid var(--border);border-radius:var(--radius);padding:16px;margin-bottom:14px}
.card h3{font-size:13px;font-weight:700;margin-bottom:10px}
.stat-row{display:grid;grid-template-columns:repeat(auto-fill,minmax(170px,1fr));gap:10px;margin-bottom:16px}
.stat-box{background:var(--surface);border:1px solid var(--border);border-radius:8px;padding:14px;text-align:center}
.stat-box .val{font-size:24px;font-weight:800;color:var(--accent)}
.stat-box .lbl{font-size:10px;color:var(--dim);margin-top:2px;text-transform:uppercase}
table{width:100%;border-collapse:collapse;font-size:12px}
th{text-align:left;padding:8px 10px;color:var(--dim);font-size:10px;text-transform:uppercase;border-bottom:1px solid var(--border)}
td{padding:8px 10px;border-bottom:1px solid var(--border)}
.badge{display:inline-block;font-size:9px;padding:2px 8px;border-radius:10px;font-weight:700}
.badge-active{background:rgba(34,197,94,.2);color:var(--success)}
.badge-inactive{background:rgba(148,163,184,.15);color:var(--dim)}
.badge-win{background:rgba(124,106,239,.2);color:var(--accent)}
.badge-jackpot{background:rgba(245,158,11,.2);color:var(--warn)}
.btn{display:inline-block;padding:6px 14px;font-size:11px;font-weight:600;border:none;border-radius:6px;cursor:pointer;text-decoration:none}
.btn-primary{background:var(--accent);color:#fff}.btn-success{background:var(--success);color:#fff}
.btn-outline{background:transparent;border:1px solid var(--border);color:var(--dim)}
input[type=text],input[type=number]{background:var(--surface);border:1px solid var(--border);color:var(--text);padding:8px 12px;border-radius:6px;font-size:12px;width:100%}
.form-row{display:grid;grid-template-columns:repeat(3,1fr);gap:12px;margin-bottom:12px}
.form-field label{display:block;font-size:10px;color:var(--dim);text-transform:uppercase;margin-bottom:4px;font-weight:600}
.bar{height:6px;background:var(--border);border-radius:3px;overflow:hidden}
.bar span{display:block;height:100%;background:var(--accent)}
.alert{padding:10px 16px;border-radius:6px;font-size:12px;margin-bottom:12px}
.alert-warn{background:rgba(245,158,11,.1);border:1px solid rgba(245,158,11,.3);color:var(--warn)}
.mono{font-family:var(--mono);font-size:11px}
</style>
"""

NAV_ITEMS = [
    ("batches", "📦 Batches", "/admin/"),
    ("config",  "⚙️ Economics", "/admin/config"),
    ("audit",   "📋 Audit",   "/admin/audit"),
]


def console_layout(content: str, active: str = "batches"):
    nav = ""
    for key, label, href in NAV_ITEMS:
        cls = " active" if key == active else ""
        nav += f'<a href="{href}" class="{cls}">{label}</a>\n'
    return f"""<!DOCTYPE html><html lang="en"><head><meta charset="UTF-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<title>BlockStake — Operator Console</title>{CONSOLE_CSS}
</head><body>
<div class="shell">
    <nav class="side">
        <div class="logo">🧱 BlockStake Ops</div>
        {nav}
    </nav>
    <main class="main">{content}</main>
</div>
</body></html>"""


def _money(x) -> str:
    return f"{x:,.2f}"


# ═══════════════════════════════════════════════════════════
# Page 1: Batches
# ═══════════════════════════════════════════════════════════

@admin_bp.route("/")
@admin_required
def console_batches():
    engine = _get_engine()
    batches = engine.list_batches()
    jackpot = engine.get_jackpot()
    active = next((b for b in batches if b.is_active), None)

    rows = ""
    for b in batches:
        pct = round(100 * b.games_played / b.total_games, 1) if b.total_games else 0
        badge = ('<span class="badge badge-active">ACTIVE</span>' if b.is_active
                 else '<span class="badge badge-inactive">idle</span>')
        action = "deactivate" if b.is_active else "activate"
        rows += (
            f'<tr><td><a href="/admin/batches/{_esc(b.id)}" style="color:var(--text)">{_esc(b.batch_name)}</a></td>'
            f'<td>{badge}</td>'
            f'<td>{b.games_played}/{b.total_games}<div class="bar"><span style="width:{pct}%"></span></div></td>'
            f'<td>{_money(b.total_investment)}</td>'
            f'<td>{_money(b.actual_player_payout)} / {_money(b.player_payout_target)}</td>'
            f'<td>{_money(b.actual_platform_revenue)}</td>'
            f'<td class="mono">{_esc(b.created_at[:19])}</td>'
            f'<td><form method="POST" action="/admin/api/batches/{_esc(b.id)}/{action}">'
            f'<button class="btn {"btn-outline" if b.is_active else "btn-success"}" type="submit">'
            f'{action.title()}</button></form></td></tr>'
        )

    return console_layout(f"""
    <h1 class="page-title">Game Batches</h1>
    <p class="page-sub">Pre-generated outcome batches and their payout progress</p>

    <div class="stat-row">
        <div class="stat-box"><div class="val">{len(batches)}</div><div class="lbl">Batches</div></div>
        <div class="stat-box"><div class="val">{_esc(active.batch_name) if active else "—"}</div><div class="lbl">Active Batch</div></div>
        <div class="stat-box"><div class="val">{_money(jackpot.current_amount)}</div><div class="lbl">Jackpot Pool</div></div>
        <div class="stat-box"><div class="val">{_money(jackpot.total_payouts)}</div><div class="lbl">Jackpots Paid</div></div>
    </div>

    <div class="card">
        <h3>Generate Batch</h3>
        <form method="POST" action="/admin/api/batches">
            <div class="form-row">
                <div class="form-field"><label>Name</label><input type="text" name="batch_name" required></div>
                <div class="form-field"><label>Total Games</label><input type="number" name="total_games" min="1" value="1000"></div>
                <div class="form-field"><label>Average Bet</label><input type="number" name="average_bet_amount" min="1" step="0.01" value="500"></div>
            </div>
            <button class="btn btn-primary" type="submit">Generate</button>
        </form>
    </div>

    <div class="card">
        <table>
            <tr><th>Name</th><th>Status</th><th>Played</th><th>Investment</th><th>Player Paid / Target</th><th>Platform</th><th>Created</th><th></th></tr>
            {rows or '<tr><td colspan="8" style="color:var(--dim)">No batches yet</td></tr>'}
        </table>
    </div>
    """, "batches")


@admin_bp.route("/batches/<batch_id>")
@admin_required
def console_batch_detail(batch_id):
    engine = _get_engine()
    p = engine.batch_progress(batch_id)
    status = request.args.get("status", "all")
    slots = engine.list_batch_slots(batch_id, status=status,
                                    sort_by=request.args.get("sort", "game_index"), limit=200)

    target_rows = ""
    for key in ("player_payout", "platform_revenue", "jackpot_contribution"):
        target_rows += (f'<tr><td>{key.replace("_", " ").title()}</td>'
                        f'<td>{_money(p.targets[key])}</td><td>{_money(p.actuals[key])}</td></tr>')

    slot_rows = ""
    for s in slots:
        badge = {"win": "badge-win", "jackpot": "badge-jackpot"}.get(s.result_type, "badge-inactive")
        slot_rows += (
            f'<tr><td>#{s.game_index}</td><td>{_esc(s.tier)}</td>'
            f'<td><span class="badge {badge}">{_esc(s.result_type)}</span></td>'
            f'<td>{_money(s.bet_amount)}</td><td>{s.max_achievable_score:,}</td>'
            f'<td>{_money(s.expected_payout)}</td><td>{s.skill_requirement}</td>'
            f'<td>{"✅" if s.is_played else ""}</td>'
            f'<td>{"" if s.actual_payout is None else _money(s.actual_payout)}</td></tr>'
        )

    tiers = " · ".join(f"{_esc(k)}: {v}" for k, v in sorted(p.remaining_by_tier.items())) or "none"

    return console_layout(f"""
    <h1 class="page-title">{_esc(p.batch_name)}</h1>
    <p class="page-sub mono">{_esc(p.batch_id)}</p>

    <div class="stat-row">
        <div class="stat-box"><div class="val">{p.completion_pct}%</div><div class="lbl">Complete</div></div>
        <div class="stat-box"><div class="val">{_money(p.stake_collected)}</div><div class="lbl">Stake Collected</div></div>
        <div class="stat-box"><div class="val">{round(p.realized_player_rtp * 100, 2)}%</div><div class="lbl">Realized RTP</div></div>
        <div class="stat-box"><div class="val">{p.paid_vs_committed_pct}%</div><div class="lbl">Paid vs Committed</div></div>
    </div>

    <div class="card">
        <h3>Targets vs Actuals</h3>
        <table><tr><th>Aggregate</th><th>Target</th><th>Actual</th></tr>{target_rows}</table>
        <p class="page-sub" style="margin:10px 0 0">Unplayed by tier: {tiers}</p>
    </div>

    <div class="card">
        <h3>Slots ({_esc(status)})</h3>
        <p style="margin-bottom:8px">
            <a class="btn btn-outline" href="?status=all">All</a>
            <a class="btn btn-outline" href="?status=unplayed">Unplayed</a>
            <a class="btn btn-outline" href="?status=played&sort=played_at">Played</a>
        </p>
        <table>
            <tr><th>#</th><th>Tier</th><th>Result</th><th>Bet</th><th>Max Score</th><th>Expected</th><th>Skill</th><th>Played</th><th>Paid</th></tr>
            {slot_rows or '<tr><td colspan="9" style="color:var(--dim)">No slots</td></tr>'}
        </table>
    </div>
    """, "batches")


# ═══════════════════════════════════════════════════════════
# Page 2: Economic Config
# ═══════════════════════════════════════════════════════════

@admin_bp.route("/config")
@admin_required
def console_config():
    cfg = _get_engine().get_config()
    fields = cfg.economic_fields()
    inputs = ""
    for key, val in fields.items():
        inputs += (f'<div class="form-field"><label>{key.replace("_", " ")}</label>'
                   f'<input type="number" step="any" name="{key}" value="{val}"></div>')
    return console_layout(f"""
    <h1 class="page-title">Economic Config</h1>
    <p class="page-sub">Version {cfg.version} · saved {_esc((cfg.created_at or "")[:19])}.
    Shares must total 100. New batches use the latest version.</p>
    <div class="card">
        <form method="POST" action="/admin/api/config">
            <div class="form-row">{inputs}</div>
            <button class="btn btn-primary" type="submit">Save New Version</button>
        </form>
    </div>
    """, "config")


@admin_bp.route("/audit")
@admin_required
def console_audit():
    rows = ""
    for r in recent_audit(50):
        rows += (f'<tr><td class="mono">{_esc((r.get("created_at") or "")[:19])}</td>'
                 f'<td>{_esc(r.get("admin_id", ""))}</td><td>{_esc(r.get("action", ""))}</td>'
                 f'<td class="mono">{_esc(r.get("target_id") or "")}</td>'
                 f'<td class="mono">{_esc(r.get("details") or "")}</td></tr>')
    return console_layout(f"""
    <h1 class="page-title">Audit Log</h1>
    <div class="card"><table>
        <tr><th>When</th><th>By</th><th>Action</th><th>Target</th><th>Details</th></tr>
        {rows or '<tr><td colspan="5" style="color:var(--dim)">Nothing yet</td></tr>'}
    </table></div>
    """, "audit")


# ═══════════════════════════════════════════════════════════
# API Endpoints
# ═══════════════════════════════════════════════════════════

@admin_bp.route("/api/config", methods=["GET"])
@admin_required
def api_get_config():
    return jsonify(_get_engine().get_config().model_dump())


@admin_bp.route("/api/config", methods=["POST"])
@admin_required
def api_update_config():
    data = _payload()
    if not request.is_json:
        # HTML form: numbers arrive as strings, blanks mean "unchanged"
        try:
            data = {k: float(v) for k, v in data.items() if str(v).strip() != ""}
        except ValueError as e:
            raise InvalidInput(f"config values must be numbers: {e}")
    cfg = _get_engine().update_config(data, updated_by=_operator_id())
    audit_log("update_config", "economic_config", str(cfg.version), data)
    return _done({"ok": True, "config": cfg.model_dump()}, "/admin/config")


@admin_bp.route("/api/batches", methods=["GET"])
@admin_required
def api_list_batches():
    return jsonify({"batches": [b.to_dict() for b in _get_engine().list_batches()]})


@admin_bp.route("/api/batches", methods=["POST"])
@admin_required
def api_generate_batch():
    data = _payload()
    total_games = _whole_number(data.get("total_games"), "total_games") or 0
    seed = _whole_number(data.get("seed"), "seed")
    try:
        avg_bet = float(data.get("average_bet_amount", 0))
    except (TypeError, ValueError):
        raise InvalidInput("average_bet_amount must be a number")
    engine = _get_engine()
    if str(data.get("preview", "")).lower() in ("1", "true"):
        return jsonify(engine.preview_batch(data.get("batch_name", ""), total_games, avg_bet, seed))

    activate = str(data.get("activate", "")).lower() in ("1", "true", "on")
    batch = engine.generate_batch(data.get("batch_name", ""), total_games, avg_bet,
                                  seed=seed, activate=activate)
    audit_log("generate_batch", "batch", batch.id,
              {"name": batch.batch_name, "total_games": total_games,
               "average_bet_amount": avg_bet, "activate": activate})
    return _done({"ok": True, "batch": batch.to_dict()}, "/admin/", status=201)


@admin_bp.route("/api/batches/<batch_id>", methods=["GET"])
@admin_required
def api_batch_progress(batch_id):
    return jsonify(_get_engine().batch_progress(batch_id).to_dict())


@admin_bp.route("/api/batches/<batch_id>/activate", methods=["POST"])
@admin_required
def api_activate_batch(batch_id):
    batch = _get_engine().activate_batch(batch_id)
    audit_log("activate_batch", "batch", batch_id)
    return _done({"ok": True, "batch": batch.to_dict()}, "/admin/")


@admin_bp.route("/api/batches/<batch_id>/deactivate", methods=["POST"])
@admin_required
def api_deactivate_batch(batch_id):
    batch = _get_engine().deactivate_batch(batch_id)
    audit_log("deactivate_batch", "batch", batch_id)
    return _done({"ok": True, "batch": batch.to_dict()}, "/admin/")


@admin_bp.route("/api/batches/<batch_id>/slots")
@admin_required
def api_batch_slots(batch_id):
    try:
        limit = int(request.args.get("limit", 500))
        offset = int(request.args.get("offset", 0))
    except ValueError:
        raise InvalidInput("limit and offset must be integers")
    slots = _get_engine().list_batch_slots(
        batch_id,
        status=request.args.get("status", "all"),
        sort_by=request.args.get("sort", "game_index"),
        limit=min(limit, 5000),
        offset=offset,
    )
    return jsonify({"batch_id": batch_id, "count": len(slots),
                    "slots": [s.to_dict() for s in slots]})
