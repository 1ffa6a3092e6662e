"""Tests for the in-memory score ledger."""

import threading

import pytest

from pole_registry.ledger import InMemoryScoreLedger, LedgerEntry, LedgerResult


class TestInMemoryScoreLedger:
    def test_first_append_accepted(self, ledger):
        assert ledger.try_append(LedgerEntry("c-1", "base", 10, "alice")) is LedgerResult.ACCEPTED
        assert ("c-1", "base") in ledger

    def test_duplicate_key_reported(self, ledger):
        ledger.try_append(LedgerEntry("c-1", "base", 10, "alice"))
        result = ledger.try_append(LedgerEntry("c-1", "base", 99, "alice"))
        assert result is LedgerResult.ALREADY_EXISTS
        assert ledger.total_for("alice") == 10

    def test_bonus_type_is_part_of_key(self, ledger):
        ledger.try_append(LedgerEntry("c-1", "base", 10, "alice"))
        assert ledger.try_append(LedgerEntry("c-1", "full_photo", 2, "alice")) is LedgerResult.ACCEPTED
        assert len(ledger) == 2

    def test_append_many_reports_each_entry(self, ledger):
        ledger.try_append(LedgerEntry("c-1", "base", 10, "alice"))
        results = ledger.try_append_many([
            LedgerEntry("c-1", "base", 10, "alice"),
            LedgerEntry("c-1", "full_photo", 2, "alice"),
        ])
        assert results == [LedgerResult.ALREADY_EXISTS, LedgerResult.ACCEPTED]

    def test_concurrent_appends_pay_once(self):
        ledger = InMemoryScoreLedger()
        barrier = threading.Barrier(10)
        results: list[LedgerResult] = []
        lock = threading.Lock()

        def run():
            barrier.wait(timeout=5)
            result = ledger.try_append(LedgerEntry("c-1", "completion", 4, "alice"))
            with lock:
                results.append(result)

        threads = [threading.Thread(target=run) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(LedgerResult.ACCEPTED) == 1
        assert ledger.total_for("alice") == 4

    def test_entries_snapshot(self, ledger):
        ledger.try_append(LedgerEntry("c-1", "base", 10, "alice"))
        entries = ledger.entries()
        ledger.try_append(LedgerEntry("c-2", "base", 6, "bob"))
        assert len(entries) == 1

    def test_transaction_removes_entries_on_error(self, ledger):
        ledger.try_append(LedgerEntry("c-0", "base", 6, "alice"))
        with pytest.raises(RuntimeError):
            with ledger.transaction():
                ledger.try_append(LedgerEntry("c-1", "base", 10, "alice"))
                ledger.try_append(LedgerEntry("c-0", "base", 6, "alice"))
                raise RuntimeError("abort")
        assert len(ledger) == 1
        assert ledger.total_for("alice") == 6

    def test_transaction_keeps_entries_on_success(self, ledger):
        with ledger.transaction():
            ledger.try_append(LedgerEntry("c-1", "base", 10, "alice"))
        assert ("c-1", "base") in ledger
