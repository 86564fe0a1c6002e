"""
Credit ledger.

Single source of truth for spendable balance. Every balance mutation writes a
journal row in the same transaction, which makes refunds and grants
idempotent and keeps the balance reconcilable against the usage log.

Concurrency model:
1. Debits are one conditional UPDATE under ``BEGIN IMMEDIATE``, so concurrent
   debits against an account serialize on the database write lock
2. No transaction is held outside a single ledger call
3. Refunds and grants are keyed by request id / payment id in the journal
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .errors import AccountNotFound, ErrorCode
from avatar_studio.storage.db import DEFAULT_DB_PATH, get_connection
from avatar_studio.storage.models import Account, LedgerEntry, LedgerEntryType, SubscriptionTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DebitResult:
    """Outcome of a conditional debit.

    ``new_balance`` is the balance after the debit, or the unchanged
    balance when the debit was rejected.
    """
    ok: bool
    new_balance: int
    reason: Optional[ErrorCode] = None


@dataclass(frozen=True)
class ReconciliationReport:
    """Audit of one account's balance against its journal and usage log."""
    account_id: str
    balance: int
    expected_balance: int
    unmatched_debits: List[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.balance == self.expected_balance and not self.unmatched_debits


def _validate_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValueError("amount must be a positive integer")


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        balance=row["balance"],
        tier=SubscriptionTier(row["tier"]),
        initial_balance=row["initial_balance"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class LedgerStore:
    """Owns every account balance mutation."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the ledger with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def open_account(
        self,
        account_id: str,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        initial_balance: int = 0
    ) -> Account:
        """Create an account with its starting balance.

        Raises:
            ValueError: If the balance is negative or the account already exists
        """
        if initial_balance < 0:
            raise ValueError("initial_balance must be >= 0")

        now = datetime.now()
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO accounts (id, balance, tier, initial_balance, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (account_id, initial_balance, tier.value, initial_balance, now.isoformat()))
        except sqlite3.IntegrityError:
            raise ValueError(f"Account already exists: {account_id}")
        finally:
            conn.close()

        logger.info("Opened account %s (%s) with %d credits", account_id, tier.value, initial_balance)
        return Account(
            id=account_id,
            balance=initial_balance,
            tier=tier,
            initial_balance=initial_balance,
            created_at=now,
        )

    def get_account(self, account_id: str) -> Account:
        """Fetch an account.

        Raises:
            AccountNotFound: If the account does not exist
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise AccountNotFound(account_id)
        return _row_to_account(row)

    def get_balance(self, account_id: str) -> int:
        """Read-only balance lookup.

        Raises:
            AccountNotFound: If the account does not exist
        """
        return self.get_account(account_id).balance

    def try_debit(self, account_id: str, amount: int, request_id: str) -> DebitResult:
        """Atomically debit ``amount`` if the balance covers it.

        The balance check and the decrement are a single statement, so two
        concurrent debits can never both spend the same credits.

        Args:
            account_id: Account to charge
            amount: Positive number of credits
            request_id: Request the debit belongs to

        Returns:
            DebitResult with ok=False and reason INSUFFICIENT_FUNDS when the
            balance is too low

        Raises:
            AccountNotFound: If the account does not exist
            ValueError: If the amount is invalid or the request was already debited
        """
        _validate_amount(amount)

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                "UPDATE accounts SET balance = balance - ? WHERE id = ? AND balance >= ?",
                (amount, account_id, amount),
            )
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT balance FROM accounts WHERE id = ?", (account_id,)
                ).fetchone()
                conn.rollback()
                if row is None:
                    raise AccountNotFound(account_id)
                logger.info(
                    "Debit of %d rejected for %s: balance %d", amount, account_id, row["balance"]
                )
                return DebitResult(
                    ok=False,
                    new_balance=row["balance"],
                    reason=ErrorCode.INSUFFICIENT_FUNDS,
                )

            try:
                self._journal(conn, account_id, request_id, LedgerEntryType.DEBIT, amount)
            except sqlite3.IntegrityError:
                raise ValueError(f"Request already debited: {request_id}")

            balance = conn.execute(
                "SELECT balance FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()["balance"]
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Debited %d from %s for %s: balance %d", amount, account_id, request_id, balance)
        return DebitResult(ok=True, new_balance=balance)

    def refund(self, account_id: str, amount: int, request_id: str) -> bool:
        """Credit back a debit. Replays for the same request id are no-ops.

        Returns:
            True if the balance was credited, False if already refunded

        Raises:
            AccountNotFound: If the account does not exist
        """
        applied = self._credit(account_id, amount, request_id, LedgerEntryType.REFUND)
        if applied:
            logger.info("Refunded %d to %s for %s", amount, account_id, request_id)
        else:
            logger.info("Refund for %s already applied, ignoring", request_id)
        return applied

    def grant(self, account_id: str, credits: int, idempotency_key: str) -> bool:
        """Add purchased credits. Replays for the same key are no-ops.

        Returns:
            True if the balance was credited, False if already granted

        Raises:
            AccountNotFound: If the account does not exist
        """
        applied = self._credit(account_id, credits, idempotency_key, LedgerEntryType.GRANT)
        if applied:
            logger.info("Granted %d credits to %s for %s", credits, account_id, idempotency_key)
        else:
            logger.info("Grant %s already applied, ignoring", idempotency_key)
        return applied

    def entries(self, account_id: str) -> List[LedgerEntry]:
        """Journal rows for an account, oldest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM ledger_entries WHERE account_id = ? ORDER BY id",
                (account_id,),
            ).fetchall()
        finally:
            conn.close()
        return [
            LedgerEntry(
                id=row["id"],
                account_id=row["account_id"],
                request_id=row["request_id"],
                entry_type=LedgerEntryType(row["entry_type"]),
                amount=row["amount"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def reconcile(self, account_id: str) -> ReconciliationReport:
        """Check the balance against the journal and the usage log.

        A debit is matched when it has either a usage log entry or a refund.
        Requests still generating also show up as unmatched.

        Raises:
            AccountNotFound: If the account does not exist
        """
        account = self.get_account(account_id)
        conn = get_connection(self.db_path)
        try:
            totals = {
                row["entry_type"]: row["total"]
                for row in conn.execute("""
                    SELECT entry_type, SUM(amount) AS total
                    FROM ledger_entries
                    WHERE account_id = ?
                    GROUP BY entry_type
                """, (account_id,))
            }
            unmatched = [
                row["request_id"]
                for row in conn.execute("""
                    SELECT d.request_id
                    FROM ledger_entries d
                    WHERE d.account_id = ?
                      AND d.entry_type = 'debit'
                      AND NOT EXISTS (
                          SELECT 1 FROM ledger_entries r
                          WHERE r.request_id = d.request_id AND r.entry_type = 'refund')
                      AND NOT EXISTS (
                          SELECT 1 FROM usage_logs u WHERE u.request_id = d.request_id)
                    ORDER BY d.id
                """, (account_id,))
            ]
        finally:
            conn.close()

        expected = (
            account.initial_balance
            + totals.get(LedgerEntryType.GRANT.value, 0)
            - totals.get(LedgerEntryType.DEBIT.value, 0)
            + totals.get(LedgerEntryType.REFUND.value, 0)
        )
        return ReconciliationReport(
            account_id=account_id,
            balance=account.balance,
            expected_balance=expected,
            unmatched_debits=unmatched,
        )

    def _credit(self, account_id: str, amount: int, key: str, entry_type: LedgerEntryType) -> bool:
        _validate_amount(amount)

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            exists = conn.execute(
                "SELECT 1 FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
            if exists is None:
                raise AccountNotFound(account_id)

            cursor = conn.execute("""
                INSERT OR IGNORE INTO ledger_entries
                (account_id, request_id, entry_type, amount, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (account_id, key, entry_type.value, amount, datetime.now().isoformat()))
            if cursor.rowcount == 0:
                conn.commit()
                return False

            conn.execute(
                "UPDATE accounts SET balance = balance + ? WHERE id = ?",
                (amount, account_id),
            )
            conn.commit()
            return True
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _journal(
        conn: sqlite3.Connection,
        account_id: str,
        request_id: str,
        entry_type: LedgerEntryType,
        amount: int
    ) -> None:
        conn.execute("""
            INSERT INTO ledger_entries
            (account_id, request_id, entry_type, amount, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (account_id, request_id, entry_type.value, amount, datetime.now().isoformat()))
