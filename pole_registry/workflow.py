"""
Pole Registry — Contribution Workflow

One method per request an outer layer handles.  Each validates and scores
before it writes, so a rejected attempt leaves nothing behind.  The pole
write and the ledger payouts of one attempt run as a single unit of work:
if any step fails, the whole attempt is undone.  A version conflict reruns
the attempt once against fresh state before giving up with
ConcurrentUpdateError.

    submit(attempt, decision)   registration or addition to an existing pole
    verify(request)             on-site verification of a pole
    like(request)               like on a pole photo
"""

from __future__ import annotations

import logging
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, TypeVar

from .algorithms.geo_proximity import Candidate, GeoPoint
from .config import EngineConfig
from .errors import ConcurrentUpdateError, ConflictError, InvalidAttemptError, PoleNotFoundError
from .inventory import PoleInventory
from .ledger import ScoreLedger
from .models import AttemptKind, LikeRequest, PoleRecord, RegistrationAttempt, VerificationRequest
from .proximity_matcher import Decision, ProximityMatcher, Resolution
from .reward_calculator import (
    AwardedBonus,
    LikeAward,
    PendingTrigger,
    RewardCalculator,
    ScoreBreakdown,
    VerificationAward,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SubmissionResult:
    resolution: Resolution
    breakdown: ScoreBreakdown | None = None
    completion: AwardedBonus | None = None

    @property
    def record(self) -> PoleRecord | None:
        return self.resolution.record

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.resolution.to_dict(),
            "score": self.breakdown.to_dict() if self.breakdown else None,
            "completion": self.completion.to_dict() if self.completion else None,
        }


@dataclass
class VerificationResult:
    record: PoleRecord
    award: VerificationAward

    def to_dict(self) -> dict[str, Any]:
        return {"record": self.record.to_dict(), **self.award.to_dict()}


class ContributionWorkflow:
    def __init__(
        self,
        inventory: PoleInventory,
        ledger: ScoreLedger,
        config: EngineConfig | None = None,
    ):
        self.config = config or EngineConfig()
        self.inventory = inventory
        self.ledger = ledger
        self.matcher = ProximityMatcher(inventory, self.config)
        self.calculator = RewardCalculator(self.config)

    # ------------------------------------------------------------------
    # Contributions
    # ------------------------------------------------------------------

    def submit(
        self,
        attempt: RegistrationAttempt,
        decision: Decision | None = None,
        *,
        now: datetime | None = None,
    ) -> SubmissionResult:
        now = now or datetime.now(timezone.utc)
        # Raises InvalidAttemptError before anything is written
        self.calculator.score_attempt(attempt, now)

        if attempt.is_additional_to_existing_pole:
            target_id = attempt.target_pole_id
        else:
            target_id = decision.target_id if decision else None
        result = self._with_retry(target_id, lambda: self._submit_once(attempt, decision, now))

        if result.resolution.is_pending:
            logger.info(
                "Contribution %s awaits a decision between %d nearby pole(s)",
                attempt.contribution_id,
                len(result.resolution.candidates),
            )
        return result

    def _submit_once(
        self,
        attempt: RegistrationAttempt,
        decision: Decision | None,
        now: datetime,
    ) -> SubmissionResult:
        with self._unit_of_work():
            if attempt.is_additional_to_existing_pole:
                resolution = self.matcher.attach(attempt)
            else:
                resolution = self.matcher.resolve(attempt, decision)
                if resolution.is_pending:
                    return SubmissionResult(resolution)

            breakdown = self.calculator.compute_points(attempt, self.ledger, now)
            completion = None
            if attempt.kind is AttemptKind.PHOTO_ADD or resolution.added_evidence:
                completion = self.calculator.complete_pending_bonus(
                    resolution.record, PendingTrigger.PHOTO_ADDED, self.ledger, now
                )
            return SubmissionResult(resolution, breakdown, completion)

    def verify(self, request: VerificationRequest, *, now: datetime | None = None) -> VerificationResult:
        now = now or datetime.now(timezone.utc)

        def record_verification() -> VerificationResult:
            with self._unit_of_work():
                pole = self.inventory.read(request.pole_id)
                if pole is None:
                    raise PoleNotFoundError(f"Pole {request.pole_id} not found")
                self.calculator.check_verifier(pole, request.verifier_id)
                if not self.matcher.is_verification_eligible(request.location, pole.id):
                    raise InvalidAttemptError(
                        f"verifier is more than {self.config.verification_radius_m}m from pole {pole.id}"
                    )
                after = self.matcher.apply_verification(
                    pole, request.verifier_id, request.verification_id, now
                )
                award = self.calculator.compute_verification_points(
                    pole, request.verifier_id, request.verification_id, self.ledger, now
                )
                return VerificationResult(after, award)

        result = self._with_retry(request.pole_id, record_verification)
        logger.info(
            "Pole %s verified by %s (%d total, %d independent, %d points)",
            result.record.id,
            request.verifier_id,
            result.record.verification_count,
            result.record.independent_verifications,
            result.award.verifier_points,
        )
        return result

    def like(self, request: LikeRequest, *, now: datetime | None = None) -> LikeAward:
        return self.calculator.compute_like_points(request, self.ledger, now)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def nearby(self, location: GeoPoint) -> list[Candidate]:
        return self.matcher.nearby(location)

    def find_by_identifier(self, normalized_id: str) -> PoleRecord:
        return self.matcher.find_by_identifier(normalized_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _with_retry(pole_id: str | None, write: Callable[[], T]) -> T:
        """Run *write*; on a conflict run it once more against fresh state."""
        try:
            return write()
        except ConflictError as e:
            logger.info("Retrying write to pole %s after conflict", e.pole_id)
        try:
            return write()
        except ConflictError as e:
            logger.warning("Pole %s conflicted again, giving up", e.pole_id)
            raise ConcurrentUpdateError(pole_id or e.pole_id) from e

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        """Inventory writes and ledger payouts of one attempt land together or not at all."""
        with ExitStack() as stack:
            for store in (self.inventory, self.ledger):
                # stores without transaction() are left to their own per-call atomicity
                begin = getattr(store, "transaction", None)
                if begin is not None:
                    stack.enter_context(begin())
            yield
