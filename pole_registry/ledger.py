"""
Pole Registry — Score Ledger Adapters

The ledger is the only thing that guarantees a bonus is paid at most once.
Entries are keyed by ``(ledger_key, bonus_type)`` where ledger_key is the
contribution, verification or like id the payout belongs to.  Appends are
insert-if-absent: a duplicate key is reported as ALREADY_EXISTS, never
raised.

try_append_many() writes a whole breakdown atomically so a failure part way
through leaves nothing behind.  transaction() widens that to every append
of one attempt, alongside the inventory write it pays for.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ContextManager, Iterator, Protocol

from . import db

logger = logging.getLogger(__name__)


class LedgerResult(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class LedgerEntry:
    ledger_key: str
    bonus_type: str
    amount: int
    recipient_id: str | None = None
    awarded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> tuple[str, str]:
        return (self.ledger_key, self.bonus_type)


class ScoreLedger(Protocol):
    def try_append(self, entry: LedgerEntry) -> LedgerResult: ...

    def try_append_many(self, entries: list[LedgerEntry]) -> list[LedgerResult]: ...

    def transaction(self) -> ContextManager[Any]: ...


# ---------------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------------


class InMemoryScoreLedger:
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], LedgerEntry] = {}
        self._local = threading.local()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._entries

    def entries(self) -> list[LedgerEntry]:
        with self._lock:
            return list(self._entries.values())

    def total_for(self, recipient_id: str) -> int:
        with self._lock:
            return sum(e.amount for e in self._entries.values() if e.recipient_id == recipient_id)

    def try_append(self, entry: LedgerEntry) -> LedgerResult:
        return self.try_append_many([entry])[0]

    def try_append_many(self, entries: list[LedgerEntry]) -> list[LedgerResult]:
        results = []
        with self._lock:
            for entry in entries:
                if entry.key in self._entries:
                    logger.debug("Ledger key %s already paid", entry.key)
                    results.append(LedgerResult.ALREADY_EXISTS)
                    continue
                self._entries[entry.key] = entry
                journal = getattr(self._local, "journal", None)
                if journal is not None:
                    journal.append(entry.key)
                results.append(LedgerResult.ACCEPTED)
        return results

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Remove the entries this thread appended if the block raises."""
        if getattr(self._local, "journal", None) is not None:
            yield
            return
        journal: list[tuple[str, str]] = []
        self._local.journal = journal
        try:
            yield
        except BaseException:
            with self._lock:
                for key in journal:
                    self._entries.pop(key, None)
            if journal:
                logger.info("Rolled back %d ledger entries", len(journal))
            raise
        finally:
            self._local.journal = None


# ---------------------------------------------------------------------------
# PostgreSQL ledger
# ---------------------------------------------------------------------------


class PostgresScoreLedger:
    """Ledger backed by the ``score_ledger`` table (primary key = payout key)."""

    def transaction(self) -> ContextManager[Any]:
        return db.transaction()

    def try_append(self, entry: LedgerEntry) -> LedgerResult:
        return self.try_append_many([entry])[0]

    def try_append_many(self, entries: list[LedgerEntry]) -> list[LedgerResult]:
        results = []
        with db.get_conn() as conn:
            with conn.cursor() as cur:
                for entry in entries:
                    cur.execute(
                        """
                        INSERT INTO score_ledger
                            (ledger_key, bonus_type, recipient_id, amount, awarded_at)
                        VALUES (%s, %s, %s, %s, %s)
                        ON CONFLICT (ledger_key, bonus_type) DO NOTHING
                        """,
                        (
                            entry.ledger_key,
                            entry.bonus_type,
                            entry.recipient_id,
                            entry.amount,
                            entry.awarded_at,
                        ),
                    )
                    results.append(
                        LedgerResult.ACCEPTED if cur.rowcount == 1 else LedgerResult.ALREADY_EXISTS
                    )
        return results
