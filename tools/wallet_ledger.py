"""
BLOCKSTAKE — Wallet Ledger

Player balances and their transaction log, kept in the same store as the
slots so a bet debit or a win credit commits in the same transaction as
the slot claim / completion it belongs to.

Transaction types: deposit, game_bet, game_win, game_refund.
"""

import logging
import uuid

from tools.economics_errors import InsufficientFunds, InvalidInput
from tools.economics_models import utcnow_iso

logger = logging.getLogger("blockstake.wallet")

TX_DEPOSIT = "deposit"
TX_GAME_BET = "game_bet"
TX_GAME_WIN = "game_win"
TX_GAME_REFUND = "game_refund"


def _amount(value) -> float:
    try:
        amount = round(float(value), 2)
    except (TypeError, ValueError):
        raise InvalidInput(f"amount must be a number (got {value!r})")
    if amount <= 0:
        raise InvalidInput(f"amount must be positive (got {value!r})")
    return amount


class WalletLedger:

    def get_balance(self, db, user_id: str) -> float:
        row = db.execute("SELECT balance FROM wallets WHERE user_id=?", (user_id,)).fetchone()
        return float(row["balance"]) if row else 0.0

    def get_wallet(self, db, user_id: str, tx_limit: int = 20) -> dict:
        row = db.execute("SELECT * FROM wallets WHERE user_id=?", (user_id,)).fetchone()
        txs = db.execute(
            """SELECT * FROM wallet_transactions WHERE user_id=?
               ORDER BY created_at DESC LIMIT ?""",
            (user_id, int(tx_limit)),
        ).fetchall()
        return {
            "user_id": user_id,
            "balance": float(row["balance"]) if row else 0.0,
            "currency": row["currency"] if row else "XAF",
            "transactions": txs,
        }

    def credit(self, db, user_id: str, amount, tx_type: str = TX_GAME_WIN,
               reference_id: str = None) -> float:
        """Add to a wallet (created on first credit). Returns the new balance."""
        amount = _amount(amount)
        now = utcnow_iso()
        db.execute(
            """INSERT INTO wallets (user_id, balance, updated_at) VALUES (?, ?, ?)
               ON CONFLICT (user_id) DO UPDATE
               SET balance = ROUND(CAST(wallets.balance + excluded.balance AS NUMERIC), 2), updated_at = excluded.updated_at""",
            (user_id, amount, now),
        )
        balance = self.get_balance(db, user_id)
        self._record(db, user_id, tx_type, amount, balance, reference_id, now)
        return balance

    def debit(self, db, user_id: str, amount, tx_type: str = TX_GAME_BET,
              reference_id: str = None) -> float:
        """Take from a wallet. Raises InsufficientFunds if the balance is short."""
        amount = _amount(amount)
        now = utcnow_iso()
        db.execute(
            """UPDATE wallets SET balance = ROUND(CAST(balance - ? AS NUMERIC), 2), updated_at = ?
               WHERE user_id = ? AND balance >= ?""",
            (amount, now, user_id, amount),
        )
        if db.rowcount != 1:
            have = self.get_balance(db, user_id)
            raise InsufficientFunds(f"balance {have:.2f} is below bet {amount:.2f}")
        balance = self.get_balance(db, user_id)
        self._record(db, user_id, tx_type, -amount, balance, reference_id, now)
        return balance

    def deposit(self, db, user_id: str, amount) -> float:
        balance = self.credit(db, user_id, amount, tx_type=TX_DEPOSIT)
        logger.info(f"Deposit {amount} for {user_id} → balance {balance:.2f}")
        return balance

    def _record(self, db, user_id, tx_type, amount, balance_after, reference_id, when):
        db.execute(
            """INSERT INTO wallet_transactions
               (id, user_id, type, amount, balance_after, reference_id, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, 'completed', ?)""",
            (str(uuid.uuid4()), user_id, tx_type, amount, balance_after, reference_id, when),
        )
