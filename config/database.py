"""
BLOCKSTAKE — Database Abstraction Layer

Dual-mode: SQLite for local dev and tests, PostgreSQL for production.
A target starting with "postgres" selects PostgreSQL (psycopg3 + pool);
anything else is treated as a SQLite file path.

Usage:
    from config.database import connect, init_db

    init_db("data/blockstake.db")
    db = connect("data/blockstake.db")
    with db.transaction():
        db.execute("UPDATE game_batches SET games_played = games_played + 1 WHERE id = ?", [bid])
    db.close()
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from config.settings import EngineConfig

logger = logging.getLogger("blockstake.db")

try:
    import psycopg
    from psycopg.rows import dict_row
    from psycopg_pool import ConnectionPool
    HAS_PSYCOPG = True
except ImportError:
    HAS_PSYCOPG = False

# Driver-level failures that a store transaction turns into PersistenceFailure
DB_ERRORS = (sqlite3.Error, psycopg.Error) if HAS_PSYCOPG else (sqlite3.Error,)

# ── Connection pools (PostgreSQL only), one per URL ──
_pg_pools = {}


def default_target() -> str:
    return EngineConfig.DATABASE_URL or EngineConfig.DB_PATH


def is_postgres(target: str) -> bool:
    return str(target).startswith("postgres")


def _get_pg_pool(url: str):
    """Lazy-init a PostgreSQL connection pool for this URL."""
    if url not in _pg_pools:
        conninfo = url
        # Heroku/Railway style postgres:// but psycopg wants postgresql://
        if conninfo.startswith("postgres://"):
            conninfo = conninfo.replace("postgres://", "postgresql://", 1)
        _pg_pools[url] = ConnectionPool(
            conninfo=conninfo,
            min_size=2,
            max_size=20,
            max_idle=300,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        logger.info("PostgreSQL pool initialized (min=2, max=20)")
    return _pg_pools[url]


# ── SQLite dict-row wrapper ──
class _SqliteDict(dict):
    """Makes sqlite3 rows behave like a dict with .get() support."""
    pass


def _sqlite_dict_factory(cursor, row):
    d = _SqliteDict()
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def _open_sqlite(path: str):
    """Open a raw SQLite connection in autocommit mode.

    Transactions are opened explicitly (BEGIN IMMEDIATE) by
    DatabaseConnection.transaction() so writers serialize up front.
    """
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=10, isolation_level=None,
                           check_same_thread=False)
    conn.row_factory = _sqlite_dict_factory
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=10000")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ═══════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════

class DatabaseConnection:
    """Unified wrapper around SQLite or PostgreSQL connections.

    Normalizes the interface so callers don't care which backend is active.
    - Accepts ? or %s placeholders, converts to the active backend
    - Returns dict rows from queries
    - transaction() wraps a unit of work: commit on success, rollback on error
    """

    def __init__(self, conn, is_pg=False, pool=None):
        self._conn = conn
        self._is_pg = is_pg
        self._pool = pool
        self._cursor = None

    def _adapt_sql(self, sql):
        if self._is_pg:
            return sql.replace("?", "%s")
        return sql.replace("%s", "?")

    def execute(self, sql, params=None):
        """Execute a query. Returns self for chaining."""
        self._cursor = self._conn.execute(self._adapt_sql(sql), params or [])
        return self

    def executemany(self, sql, seq_of_params):
        sql = self._adapt_sql(sql)
        if self._is_pg:
            cur = self._conn.cursor()
            cur.executemany(sql, seq_of_params)
            self._cursor = cur
        else:
            self._cursor = self._conn.executemany(sql, seq_of_params)
        return self

    def executescript(self, sql):
        """Execute multiple statements. For PG, splits on semicolons."""
        if self._is_pg:
            for stmt in sql.split(";"):
                stmt = stmt.strip()
                if stmt:
                    self._conn.execute(stmt)
        else:
            self._conn.executescript(sql)
        return self

    def fetchone(self):
        """Fetch one row as dict, or None."""
        if self._cursor is None:
            return None
        row = self._cursor.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self):
        """Fetch all rows as list[dict]."""
        if self._cursor is None:
            return []
        return [dict(r) for r in self._cursor.fetchall()]

    @property
    def rowcount(self) -> int:
        """Rows touched by the last execute (-1 when unknown)."""
        if self._cursor is None:
            return -1
        return self._cursor.rowcount

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    @contextmanager
    def transaction(self):
        """One atomic unit of work on this connection."""
        if not self._is_pg:
            self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    def close(self):
        if self._pool is not None:
            # Hand the connection back; the pool resets any open transaction
            self._pool.putconn(self._conn)
        else:
            self._conn.close()


def connect(target: str = None) -> DatabaseConnection:
    """Open a standalone connection. Caller MUST close it."""
    target = target or default_target()
    if is_postgres(target):
        if not HAS_PSYCOPG:
            raise RuntimeError("PostgreSQL target configured but psycopg is not installed "
                               "(pip install 'blockstake[postgres]')")
        pool = _get_pg_pool(target)
        return DatabaseConnection(pool.getconn(), is_pg=True, pool=pool)
    return DatabaseConnection(_open_sqlite(target), is_pg=False)


# ═══════════════════════════════════════════════════════════════
# Schema Initialization
# ═══════════════════════════════════════════════════════════════

# SQL that works for BOTH SQLite and PostgreSQL.
# Booleans are INTEGER 0/1, money is DOUBLE PRECISION, timestamps are ISO TEXT.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS economic_config (
    id TEXT PRIMARY KEY,
    version INTEGER NOT NULL UNIQUE,
    player_share_pct DOUBLE PRECISION NOT NULL,
    platform_share_pct DOUBLE PRECISION NOT NULL,
    jackpot_share_pct DOUBLE PRECISION NOT NULL,
    base_return_rate DOUBLE PRECISION NOT NULL,
    max_win_multiplier DOUBLE PRECISION NOT NULL,
    jackpot_trigger_rate DOUBLE PRECISION NOT NULL,
    updated_by TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS game_batches (
    id TEXT PRIMARY KEY,
    batch_name TEXT NOT NULL,
    total_games INTEGER NOT NULL,
    average_bet_amount DOUBLE PRECISION NOT NULL,
    total_investment DOUBLE PRECISION NOT NULL,
    player_payout_target DOUBLE PRECISION NOT NULL,
    platform_revenue_target DOUBLE PRECISION NOT NULL,
    jackpot_contribution_target DOUBLE PRECISION NOT NULL,
    committed_payout DOUBLE PRECISION NOT NULL DEFAULT 0,
    games_played INTEGER NOT NULL DEFAULT 0,
    actual_player_payout DOUBLE PRECISION NOT NULL DEFAULT 0,
    actual_platform_revenue DOUBLE PRECISION NOT NULL DEFAULT 0,
    actual_jackpot_contribution DOUBLE PRECISION NOT NULL DEFAULT 0,
    config_version INTEGER,
    is_active INTEGER NOT NULL DEFAULT 0,
    created_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_batches_single_active
    ON game_batches(is_active) WHERE is_active = 1;
CREATE INDEX IF NOT EXISTS idx_batches_created ON game_batches(created_at);

CREATE TABLE IF NOT EXISTS pre_generated_games (
    id TEXT PRIMARY KEY,
    batch_id TEXT NOT NULL,
    game_index INTEGER NOT NULL,
    tier TEXT NOT NULL,
    bet_amount DOUBLE PRECISION NOT NULL,
    max_achievable_score INTEGER NOT NULL,
    result_type TEXT NOT NULL CHECK (result_type IN ('loss', 'win', 'jackpot')),
    win_multiplier DOUBLE PRECISION,
    expected_payout DOUBLE PRECISION NOT NULL,
    skill_requirement INTEGER NOT NULL CHECK (skill_requirement BETWEEN 1 AND 10),
    is_played INTEGER NOT NULL DEFAULT 0,
    session_id TEXT,
    claimed_at TEXT,
    played_at TEXT,
    actual_score INTEGER,
    actual_payout DOUBLE PRECISION,
    UNIQUE (batch_id, game_index),
    FOREIGN KEY (batch_id) REFERENCES game_batches(id)
);

CREATE INDEX IF NOT EXISTS idx_slots_open
    ON pre_generated_games(batch_id, is_played, game_index);
CREATE INDEX IF NOT EXISTS idx_slots_bet ON pre_generated_games(batch_id, bet_amount);

CREATE TABLE IF NOT EXISTS jackpot_pool (
    id TEXT PRIMARY KEY CHECK (id = 'global'),
    current_amount DOUBLE PRECISION NOT NULL DEFAULT 0,
    total_contributions DOUBLE PRECISION NOT NULL DEFAULT 0,
    total_payouts DOUBLE PRECISION NOT NULL DEFAULT 0,
    last_winner_id TEXT,
    last_win_amount DOUBLE PRECISION,
    last_win_date TEXT,
    updated_at TEXT
);

INSERT INTO jackpot_pool (id) VALUES ('global') ON CONFLICT (id) DO NOTHING;

CREATE TABLE IF NOT EXISTS game_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    slot_id TEXT NOT NULL,
    batch_id TEXT NOT NULL,
    bet_amount DOUBLE PRECISION NOT NULL,
    skill_level INTEGER,
    status TEXT NOT NULL DEFAULT 'active',
    score INTEGER,
    payout_amount DOUBLE PRECISION,
    started_at TEXT,
    completed_at TEXT,
    FOREIGN KEY (slot_id) REFERENCES pre_generated_games(id)
);

DROP INDEX IF EXISTS uq_sessions_slot;
CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_active_slot ON game_sessions(slot_id)
    WHERE status = 'active';
CREATE INDEX IF NOT EXISTS idx_sessions_status ON game_sessions(status, started_at);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON game_sessions(user_id);

CREATE TABLE IF NOT EXISTS wallets (
    user_id TEXT PRIMARY KEY,
    balance DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (balance >= 0),
    currency TEXT NOT NULL DEFAULT 'XAF',
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS wallet_transactions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    amount DOUBLE PRECISION NOT NULL,
    balance_after DOUBLE PRECISION NOT NULL,
    reference_id TEXT,
    status TEXT NOT NULL DEFAULT 'completed',
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_wallet_tx_user ON wallet_transactions(user_id);

CREATE TABLE IF NOT EXISTS admin_audit_log (
    id TEXT PRIMARY KEY,
    admin_id TEXT,
    action TEXT NOT NULL,
    target_type TEXT,
    target_id TEXT,
    details TEXT,
    ip_address TEXT,
    created_at TEXT
)
"""


def init_db(target: str = None):
    """Initialize the database schema (idempotent)."""
    target = target or default_target()
    db = connect(target)
    try:
        db.executescript(SCHEMA_SQL)
        db.commit()
        mode = "PostgreSQL" if is_postgres(target) else "SQLite"
        logger.info(f"Database initialized ({mode})")
    finally:
        db.close()
