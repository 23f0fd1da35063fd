#!/usr/bin/env python3
"""
BLOCKSTAKE — Economics Operator CLI

Usage:
    python -m tools.economics_cli init
    python -m tools.economics_cli config
    python -m tools.economics_cli set-config player_share_pct=75 platform_share_pct=15
    python -m tools.economics_cli generate "Week 12" --games 5000 --avg-bet 500 --activate
    python -m tools.economics_cli generate "Dry run" --games 5000 --avg-bet 500 --preview
    python -m tools.economics_cli activate <batch_id>
    python -m tools.economics_cli batches
    python -m tools.economics_cli progress <batch_id>
    python -m tools.economics_cli expire --max-age 1800
    python -m tools.economics_cli simulate --games 10000 --avg-bet 500 --seed 7
"""

import argparse
import logging
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tools.economics_errors import EconomicsError, InvalidInput

console = Console()


def _engine(args):
    from tools.economics_engine import EconomicsEngine
    return EconomicsEngine(args.db)


def _parse_assignments(pairs: list[str]) -> dict:
    changes = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep:
            raise InvalidInput(f"expected key=value, got {pair!r}")
        try:
            changes[key.strip()] = float(raw)
        except ValueError:
            raise InvalidInput(f"{key} must be a number (got {raw!r})")
    return changes


def cmd_init(args):
    engine = _engine(args)
    console.print(f"[green]✅ Store ready[/green] at {engine.store.target}")


def cmd_config(args):
    cfg = _engine(args).get_config()
    table = Table(title=f"Economic config v{cfg.version}")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    for key, val in cfg.economic_fields().items():
        table.add_row(key, f"{val:g}")
    console.print(table)


def cmd_set_config(args):
    cfg = _engine(args).update_config(_parse_assignments(args.assignments), updated_by="cli")
    console.print(f"[green]✅ Saved config v{cfg.version}[/green]")


def cmd_generate(args):
    engine = _engine(args)
    if args.preview:
        preview = engine.preview_batch(args.name, args.games, args.avg_bet, seed=args.seed)
        _print_summary(preview["batch"], preview["summary"])
        return
    batch = engine.generate_batch(args.name, args.games, args.avg_bet,
                                  seed=args.seed, activate=args.activate)
    console.print(Panel(
        f"[bold]{batch.batch_name}[/bold]  ({batch.id})\n"
        f"Investment {batch.total_investment:,.2f} · player target {batch.player_payout_target:,.2f} "
        f"· committed {batch.committed_payout:,.2f}\n"
        f"{'[green]ACTIVE[/green]' if batch.is_active else 'inactive'}",
        title="Batch generated",
    ))


def cmd_activate(args):
    engine = _engine(args)
    batch = engine.deactivate_batch(args.batch_id) if args.off else engine.activate_batch(args.batch_id)
    state = "active" if batch.is_active else "inactive"
    console.print(f"Batch [bold]{batch.batch_name}[/bold] is now {state}")


def cmd_batches(args):
    table = Table(title="Game batches")
    for col in ("", "Name", "ID", "Played", "Investment", "Player paid / target", "Created"):
        table.add_column(col)
    for b in _engine(args).list_batches():
        table.add_row(
            "●" if b.is_active else "",
            b.batch_name, b.id[:8], f"{b.games_played}/{b.total_games}",
            f"{b.total_investment:,.2f}",
            f"{b.actual_player_payout:,.2f} / {b.player_payout_target:,.2f}",
            b.created_at[:19],
        )
    console.print(table)


def cmd_progress(args):
    p = _engine(args).batch_progress(args.batch_id)
    table = Table(title=f"{p.batch_name} — {p.games_played}/{p.total_games} ({p.completion_pct}%)")
    table.add_column("Aggregate")
    table.add_column("Target", justify="right")
    table.add_column("Actual", justify="right")
    for key in p.targets:
        table.add_row(key, f"{p.targets[key]:,.2f}", f"{p.actuals[key]:,.2f}")
    console.print(table)
    console.print(f"Stake collected {p.stake_collected:,.2f} · realized RTP "
                  f"{p.realized_player_rtp * 100:.2f}% · paid vs committed {p.paid_vs_committed_pct}%")
    console.print(f"Unplayed by tier: {p.remaining_by_tier}")


def cmd_expire(args):
    count = _engine(args).expire_sessions(max_age_seconds=args.max_age)
    console.print(f"Expired {count} abandoned session(s); bets refunded and slots released")


def cmd_simulate(args):
    from sim_engine.batch_sim import simulate
    from tools.batch_generator import generate

    # In-memory batch shaped by the current stored config
    batch, slots = generate("simulation", args.games, args.avg_bet,
                            _engine(args).get_config(), random.Random(args.seed))
    result = simulate(batch, slots, seed=args.seed)
    console.print(f"[cyan]Simulated {result.games:,} plays[/cyan]")
    console.print(f"   Target RTP: {result.target_rtp * 100:.2f}%")
    console.print(f"   Realized RTP: {result.rtp * 100:.2f}%")
    console.print(f"   Hit rate: {result.hit_rate * 100:.1f}%  ·  jackpot hits: {result.jackpot_hits}")
    console.print(f"   Paid vs committed: {result.paid_vs_committed * 100:.1f}%")
    table = Table(title="By tier")
    for col in ("Tier", "Plays", "Hits", "Paid"):
        table.add_column(col, justify="right")
    for tier, t in result.by_tier.items():
        table.add_row(tier, str(t["plays"]), str(t["hits"]), f"{t['paid']:,.2f}")
    console.print(table)


def _print_summary(batch: dict, summary: dict):
    table = Table(title=f"Preview: {batch['batch_name']} ({summary['total_slots']:,} slots)")
    for col in ("Tier", "Count", "Share", "Wins", "Committed"):
        table.add_column(col, justify="right")
    for tier, t in summary["by_tier"].items():
        table.add_row(tier, str(t["count"]), f"{t['share'] * 100:.2f}%", str(t["wins"]),
                      f"{t['committed']:,.2f}")
    console.print(table)
    console.print(f"Committed {summary['committed_payout']:,.2f} of player target "
                  f"{batch['player_payout_target']:,.2f} · win rate {summary['win_rate'] * 100:.1f}%")


def main(argv=None):
    parser = argparse.ArgumentParser(description="BlockStake batch economics")
    parser.add_argument("--db", type=str, default=None, help="SQLite path or postgres URL")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init").set_defaults(func=cmd_init)
    sub.add_parser("config").set_defaults(func=cmd_config)

    p = sub.add_parser("set-config")
    p.add_argument("assignments", nargs="+", help="field=value")
    p.set_defaults(func=cmd_set_config)

    p = sub.add_parser("generate")
    p.add_argument("name")
    p.add_argument("--games", type=int, required=True)
    p.add_argument("--avg-bet", type=float, required=True)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--activate", action="store_true")
    p.add_argument("--preview", action="store_true", help="Show the tier mix without saving")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("activate")
    p.add_argument("batch_id")
    p.add_argument("--off", action="store_true", help="Deactivate instead")
    p.set_defaults(func=cmd_activate)

    sub.add_parser("batches").set_defaults(func=cmd_batches)

    p = sub.add_parser("progress")
    p.add_argument("batch_id")
    p.set_defaults(func=cmd_progress)

    p = sub.add_parser("expire")
    p.add_argument("--max-age", type=int, default=None, help="Seconds (default CLAIM_TTL_SECONDS)")
    p.set_defaults(func=cmd_expire)

    p = sub.add_parser("simulate")
    p.add_argument("--games", type=int, default=10_000)
    p.add_argument("--avg-bet", type=float, default=500.0)
    p.add_argument("--seed", type=int, default=42)
    p.set_defaults(func=cmd_simulate)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
                        datefmt="%H:%M:%S")
    try:
        args.func(args)
    except EconomicsError as e:
        console.print(f"[red]❌ {e.code}: {e}[/red]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
