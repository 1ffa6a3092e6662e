"""End-to-end tests for the contribution workflow on the in-memory stores."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from pole_registry.algorithms.geo_proximity import offset_point
from pole_registry.errors import (
    ConcurrentUpdateError,
    ConflictError,
    InvalidAttemptError,
    PoleNotFoundError,
)
from pole_registry.inventory import InMemoryPoleInventory
from pole_registry.ledger import InMemoryScoreLedger
from pole_registry.models import LikeRequest, PhotoKind, PolePatch, Scenario, VerificationRequest
from pole_registry.proximity_matcher import Decision, Outcome
from pole_registry.workflow import ContributionWorkflow

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FlakyLedger(InMemoryScoreLedger):
    """Ledger whose n-th append raises, as a lost database connection would."""

    def __init__(self, fail_on_call=1):
        super().__init__()
        self.calls = 0
        self.fail_on_call = fail_on_call

    def try_append_many(self, entries):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise RuntimeError("ledger unavailable")
        return super().try_append_many(entries)


def _verification(pole, verifier, verification_id, point=None):
    point = point or pole.location
    return VerificationRequest(
        verification_id=verification_id,
        pole_id=pole.id,
        verifier_id=verifier,
        latitude=point.latitude,
        longitude=point.longitude,
    )


# ---- submit -----------------------------------------------------------------


class TestSubmit:
    def test_new_registration_is_scored(self, workflow, ledger, make_attempt):
        result = workflow.submit(make_attempt(), now=NOW)
        assert result.resolution.outcome is Outcome.NEW
        assert result.breakdown.total == 10
        assert ledger.total_for("alice") == 10

    def test_awaiting_decision_pays_nothing(self, workflow, ledger, make_pole, make_attempt, origin):
        make_pole(offset_point(origin, north_m=3))
        result = workflow.submit(make_attempt(), now=NOW)
        assert result.resolution.is_pending
        assert result.breakdown is None
        assert len(ledger) == 0

    def test_same_decision_merges_and_scores(self, workflow, make_pole, make_attempt, origin):
        pole = make_pole(offset_point(origin, north_m=3), evidence=())
        attempt = make_attempt(photo_evidence={"full"})
        pending = workflow.submit(attempt, now=NOW)
        result = workflow.submit(attempt, Decision.same(pending.resolution.candidates[0].record.id), now=NOW)
        assert result.resolution.outcome is Outcome.MERGED
        assert result.record.id == pole.id
        assert PhotoKind.FULL in result.record.evidence
        assert result.breakdown.total == 12

    def test_invalid_attempt_writes_nothing(self, workflow, inventory, ledger, make_attempt):
        with pytest.raises(InvalidAttemptError):
            workflow.submit(make_attempt(plate_count=0), now=NOW)
        assert len(inventory) == 0
        assert len(ledger) == 0

    def test_missing_target_rejected(self, workflow, make_attempt):
        attempt = make_attempt(
            kind="additional_identifier",
            identifiers=["NTT-12"],
            is_additional_to_existing_pole=True,
            target_pole_id="pole-999999",
        )
        with pytest.raises(InvalidAttemptError):
            workflow.submit(attempt, now=NOW)

    def test_photo_add_completes_pending_bonus(self, workflow, ledger, make_attempt):
        registration = make_attempt(photo_evidence=set())
        pole = workflow.submit(registration, now=NOW).record

        photo = make_attempt(
            kind="photo_add",
            contributor_id="bob",
            identifiers=[],
            plate_count=0,
            photo_evidence={"full"},
            is_additional_to_existing_pole=True,
            target_pole_id=pole.id,
        )
        result = workflow.submit(photo, now=NOW)
        assert result.breakdown.total == 5
        assert result.completion.points == 4
        assert result.completion.recipient_id == "alice"
        assert ledger.total_for("alice") == 6 + 4
        assert ledger.total_for("bob") == 5
        assert result.record.evidence == {PhotoKind.FULL}

    def test_second_photo_add_does_not_repay_completion(self, workflow, ledger, make_attempt):
        pole = workflow.submit(make_attempt(photo_evidence=set()), now=NOW).record
        for contributor, kind in (("bob", "plate"), ("carol", "detail")):
            workflow.submit(
                make_attempt(
                    kind="photo_add",
                    contributor_id=contributor,
                    identifiers=[],
                    plate_count=0,
                    photo_evidence={kind},
                    is_additional_to_existing_pole=True,
                    target_pole_id=pole.id,
                ),
                now=NOW,
            )
        assert ledger.total_for("alice") == 6 + 4

    def test_same_merge_with_new_photo_completes_pending_bonus(
        self, workflow, ledger, make_pole, make_attempt, origin
    ):
        pole = make_pole(offset_point(origin, north_m=3), evidence=(), scenario=Scenario.GPS_NO_PHOTO)
        attempt = make_attempt(contributor_id="bob", photo_evidence={"plate"})
        result = workflow.submit(attempt, Decision.same(pole.id), now=NOW)
        assert result.resolution.added_evidence == {PhotoKind.PLATE}
        assert result.completion.points == 4
        assert ledger.total_for("owner") == 4

    def test_same_merge_without_new_photo_leaves_bonus_pending(
        self, workflow, ledger, make_pole, make_attempt, origin
    ):
        pole = make_pole(offset_point(origin, north_m=3), scenario=Scenario.GPS_NO_PHOTO)
        result = workflow.submit(make_attempt(contributor_id="bob"), Decision.same(pole.id), now=NOW)
        assert result.completion is None
        assert ledger.total_for("owner") == 0

    def test_identifier_completion_on_placeholder_pole(self, workflow, make_attempt):
        pole = workflow.submit(make_attempt(identifiers=[], plate_count=0), now=NOW).record
        completion = make_attempt(
            kind="identifier_completion",
            contributor_id="bob",
            photo_evidence=set(),
            is_additional_to_existing_pole=True,
            target_pole_id=pole.id,
        )
        result = workflow.submit(completion, now=NOW)
        assert result.breakdown.total == 10
        assert "247エ714" in result.record.canonical_identifiers
        assert workflow.find_by_identifier("２４７エ７１４").id == pole.id


# ---- concurrency ------------------------------------------------------------


class TestConcurrentMerges:
    def test_loser_retries_and_keeps_both_contributions(
        self, workflow, inventory, make_pole, make_attempt, monkeypatch
    ):
        pole = make_pole(evidence=())
        original_read = inventory.read
        barrier = threading.Barrier(2)
        first_reads: set[str] = set()
        lock = threading.Lock()

        def racing_read(pole_id):
            record = original_read(pole_id)
            name = threading.current_thread().name
            with lock:
                first = name not in first_reads
                first_reads.add(name)
            if first:
                barrier.wait(timeout=5)
            return record

        monkeypatch.setattr(inventory, "read", racing_read)

        attempts = {
            "alice": make_attempt(contributor_id="alice", photo_evidence={"full"}),
            "bob": make_attempt(contributor_id="bob", photo_evidence={"detail"}),
        }
        errors: list[Exception] = []

        def run(name):
            try:
                workflow.submit(attempts[name], Decision.same(pole.id), now=NOW)
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [threading.Thread(target=run, args=(n,), name=n) for n in attempts]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        final = original_read(pole.id)
        assert final.evidence == {PhotoKind.FULL, PhotoKind.DETAIL}
        assert final.version == 3

    def test_second_conflict_surfaces(self, workflow, inventory, make_pole, make_attempt, monkeypatch):
        pole = make_pole(evidence=())
        original_read = inventory.read

        def always_stale(pole_id):
            record = original_read(pole_id)
            inventory.write_if_version(pole_id, record.version, PolePatch(verification_count=0))
            return record

        monkeypatch.setattr(inventory, "read", always_stale)
        with pytest.raises(ConcurrentUpdateError) as exc:
            workflow.submit(make_attempt(photo_evidence={"full"}), Decision.same(pole.id), now=NOW)
        assert "please retry" in str(exc.value)
        assert isinstance(exc.value.__cause__, ConflictError)
        assert PhotoKind.FULL not in original_read(pole.id).evidence


# ---- verify -----------------------------------------------------------------


class TestVerify:
    def test_verification_counts_and_pays(self, workflow, make_pole, ledger):
        pole = make_pole(scenario=Scenario.MANUAL_PHOTO)
        result = workflow.verify(_verification(pole, "bob", "v-1"), now=NOW)
        assert result.record.verification_count == 1
        assert result.record.last_verified_at == NOW
        assert result.award.verifier_points == 3
        assert ledger.total_for("bob") == 3

    def test_three_verifications_complete(self, workflow, make_pole, ledger):
        pole = make_pole(scenario=Scenario.MANUAL_NO_PHOTO, evidence=())
        awards = [
            workflow.verify(_verification(pole, v, f"v-{i}"), now=NOW + timedelta(days=i)).award
            for i, v in enumerate(("bob", "carol", "dave"))
        ]
        # only the first verification falls outside the cool-down window
        assert [a.verifier_points for a in awards] == [4, 0, 0]
        assert awards[2].completion.points == 3
        assert ledger.total_for("owner") == 3
        assert workflow.inventory.read(pole.id).verification_status.value == "highly_verified"

    def test_too_far_rejected(self, workflow, make_pole, origin):
        pole = make_pole()
        request = _verification(pole, "bob", "v-1", offset_point(origin, east_m=60))
        with pytest.raises(InvalidAttemptError):
            workflow.verify(request, now=NOW)
        assert workflow.inventory.read(pole.id).verification_count == 0

    def test_unknown_pole(self, workflow, make_pole):
        pole = make_pole()
        request = _verification(pole, "bob", "v-1").model_copy(update={"pole_id": "pole-999999"})
        with pytest.raises(PoleNotFoundError):
            workflow.verify(request, now=NOW)

    def test_self_verification_writes_nothing(self, workflow, make_pole):
        pole = make_pole()
        with pytest.raises(InvalidAttemptError):
            workflow.verify(_verification(pole, "owner", "v-1"), now=NOW)
        assert workflow.inventory.read(pole.id).version == 1

    def test_one_verifier_cannot_complete_alone(self, workflow, make_pole, ledger):
        pole = make_pole(scenario=Scenario.MANUAL_NO_PHOTO, evidence=())
        awards = [
            workflow.verify(_verification(pole, "bob", f"v-{i}"), now=NOW + timedelta(days=i)).award
            for i in range(3)
        ]
        assert [a.completion for a in awards] == [None, None, None]
        assert awards[-1].independent_verifications == 1
        assert ledger.total_for("owner") == 0
        assert workflow.inventory.read(pole.id).verification_count == 3

    def test_replayed_verification_id_counts_once(self, workflow, make_pole, ledger):
        pole = make_pole(scenario=Scenario.MANUAL_PHOTO)
        results = [workflow.verify(_verification(pole, "bob", "v-1"), now=NOW) for _ in range(3)]
        assert [r.award.verifier_points for r in results] == [3, 0, 0]
        record = workflow.inventory.read(pole.id)
        assert record.verification_count == 1
        assert record.version == 2
        assert ledger.total_for("bob") == 3


# ---- atomic attempts --------------------------------------------------------


class TestAtomicAttempts:
    def test_failed_ledger_leaves_no_pole(self, config, make_attempt):
        inventory = InMemoryPoleInventory()
        workflow = ContributionWorkflow(inventory, FlakyLedger(), config)
        with pytest.raises(RuntimeError):
            workflow.submit(make_attempt(), now=NOW)
        assert len(inventory) == 0

    def test_failed_completion_undoes_photo_add(self, inventory, config, make_pole, make_attempt):
        pole = make_pole(scenario=Scenario.GPS_NO_PHOTO, evidence=())
        ledger = FlakyLedger(fail_on_call=2)
        workflow = ContributionWorkflow(inventory, ledger, config)
        photo = make_attempt(
            kind="photo_add",
            contributor_id="bob",
            identifiers=[],
            plate_count=0,
            photo_evidence={"full"},
            is_additional_to_existing_pole=True,
            target_pole_id=pole.id,
        )
        with pytest.raises(RuntimeError):
            workflow.submit(photo, now=NOW)
        assert inventory.read(pole.id) == pole
        assert len(ledger) == 0

    def test_failed_ledger_undoes_verification(self, inventory, config, make_pole):
        pole = make_pole()
        workflow = ContributionWorkflow(inventory, FlakyLedger(), config)
        with pytest.raises(RuntimeError):
            workflow.verify(_verification(pole, "bob", "v-1"), now=NOW)
        record = inventory.read(pole.id)
        assert record.verification_count == 0
        assert record.verifier_ids == frozenset()
        assert record.version == 1

    def test_attempt_succeeds_once_ledger_recovers(self, inventory, config, make_attempt):
        ledger = FlakyLedger()
        workflow = ContributionWorkflow(inventory, ledger, config)
        attempt = make_attempt()
        with pytest.raises(RuntimeError):
            workflow.submit(attempt, now=NOW)
        result = workflow.submit(attempt, now=NOW)
        assert result.breakdown.total == 10
        assert len(inventory) == 1


# ---- likes and lookups ------------------------------------------------------


class TestLikeAndLookup:
    def test_like(self, workflow, ledger):
        request = LikeRequest(like_id="l-1", photo_id="p-1", photo_owner_id="alice", liker_id="bob")
        award = workflow.like(request, now=NOW)
        assert award.to_dict() == {"owner_points": 1, "liker_points": 1, "capped": False}

    def test_nearby(self, workflow, make_pole, origin):
        make_pole(offset_point(origin, north_m=20))
        assert len(workflow.nearby(origin)) == 1

    def test_find_by_identifier_missing(self, workflow):
        with pytest.raises(PoleNotFoundError):
            workflow.find_by_identifier("247エ714")
