"""
Usage recording.

Appends one immutable usage-log entry per billed action. A failed write after
a successful generation does not fail the request: the entry is retried in a
background thread with exponential backoff, and exhaustion raises an
operator-visible CRITICAL log record.
"""

import logging
import sqlite3
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .errors import LogWriteFailed
from avatar_studio.storage.models import UsageLogEntry
from avatar_studio.storage.repository import UsageRepository

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Durable, append-only audit log of billed actions."""

    def __init__(
        self,
        repository: UsageRepository,
        max_retries: int = 5,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize the recorder.

        Args:
            repository: Usage log storage
            max_retries: Background write attempts after the first failure
            base_delay: Delay in seconds before the first retry
            max_delay: Upper bound on the delay between retries
            sleep: Sleep function, replaceable in tests
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base_delay < 0 or max_delay < base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")

        self.repository = repository
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._pending: Dict[str, UsageLogEntry] = {}
        self._lock = threading.Lock()
        self._threads: List[threading.Thread] = []

    @property
    def pending(self) -> List[str]:
        """Request ids whose usage entry has not been written yet."""
        with self._lock:
            return list(self._pending)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry ``attempt`` (0-based): doubling, capped."""
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    def record(
        self,
        account_id: str,
        action: str,
        credits_used: int,
        detail: Dict[str, Any],
        request_id: str
    ) -> Optional[int]:
        """Append a usage entry for a billed request.

        Returns:
            Id of the stored entry, or None if the write was deferred to
            background retries
        """
        entry = UsageLogEntry(
            account_id=account_id,
            action=action,
            credits_used=credits_used,
            detail=detail,
            request_id=request_id,
            created_at=datetime.now(),
        )
        try:
            return self.repository.insert_entry(entry)
        except sqlite3.Error as e:
            logger.warning("Usage log write failed for %s: %s; retrying in background", request_id, e)
            self._schedule_retry(entry)
            return None

    def flush(self) -> None:
        """Synchronously write every pending entry.

        Raises:
            LogWriteFailed: If any entry still cannot be written
        """
        for entry in self._pending_entries():
            try:
                self.repository.insert_entry(entry)
            except sqlite3.Error as e:
                logger.warning("Usage log flush failed for %s: %s", entry.request_id, e)
                continue
            self._forget(entry.request_id)

        remaining = self.pending
        if remaining:
            raise LogWriteFailed(remaining)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until background retries have finished."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    def list_entries(self, account_id: str, limit: int = 100) -> List[UsageLogEntry]:
        return self.repository.fetch_entries(account_id=account_id, limit=limit)

    def total_credits_used(self, account_id: str) -> int:
        """Credits recorded against an account across its whole usage log."""
        return self.repository.total_credits_used(account_id)

    def _schedule_retry(self, entry: UsageLogEntry) -> None:
        with self._lock:
            self._pending[entry.request_id] = entry
            thread = threading.Thread(
                target=self._retry_loop,
                args=(entry,),
                name=f"usage-retry-{entry.request_id}",
                daemon=True,
            )
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def _retry_loop(self, entry: UsageLogEntry) -> None:
        for attempt in range(self.max_retries):
            self._sleep(self.delay_for(attempt))
            with self._lock:
                if entry.request_id not in self._pending:
                    return
            try:
                self.repository.insert_entry(entry)
            except sqlite3.Error as e:
                logger.warning(
                    "Usage log retry %d/%d failed for %s: %s",
                    attempt + 1, self.max_retries, entry.request_id, e
                )
                continue
            self._forget(entry.request_id)
            logger.info("Usage log entry for %s written after %d retries", entry.request_id, attempt + 1)
            return

        logger.critical(
            "Usage log entry for %s (account %s, %d credits) could not be written after %d retries; "
            "run `avatar-studio reconcile` to restore the audit trail",
            entry.request_id, entry.account_id, entry.credits_used, self.max_retries
        )

    def _pending_entries(self) -> List[UsageLogEntry]:
        with self._lock:
            return list(self._pending.values())

    def _forget(self, request_id: str) -> None:
        with self._lock:
            self._pending.pop(request_id, None)
