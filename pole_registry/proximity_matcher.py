"""
Pole Identity Resolution.

Responsibilities:
- Find recorded poles near an incoming registration.
- Decide, with an explicit human decision when needed, whether the
  registration is a pole already on record or a new one.
- Apply that decision with an optimistic, version-checked write.

Non-Responsibilities:
- No scoring.
- No guessing: when candidates exist the caller must answer Same or
  Different.  Two records are never merged without that answer.

State machine per attempt:

    unchecked ─┬─ no_candidates ── auto_new
               └─ candidates_found ── awaiting_decision ─┬─ same ── merged
                                                         └─ different ── new

awaiting_decision is returned to the caller as a value; the caller calls
resolve() again with the decision once the contributor has chosen.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .algorithms.geo_proximity import Candidate, GeoPoint
from .algorithms.normalizer import generate_placeholder_identifier, normalize
from .config import EngineConfig
from .errors import ConflictError, InvalidAttemptError, PoleNotFoundError
from .inventory import PoleInventory
from .models import (
    AttemptKind,
    Identifier,
    PhotoKind,
    PoleDraft,
    PolePatch,
    PoleRecord,
    RegistrationAttempt,
)

logger = logging.getLogger(__name__)


class MatchState(str, Enum):
    UNCHECKED = "unchecked"
    NO_CANDIDATES = "no_candidates"
    AUTO_NEW = "auto_new"
    CANDIDATES_FOUND = "candidates_found"
    AWAITING_DECISION = "awaiting_decision"
    SAME = "same"
    MERGED = "merged"
    DIFFERENT = "different"
    NEW = "new"


class Outcome(str, Enum):
    NEW = "new"
    MERGED = "merged"
    AWAITING_DECISION = "awaiting_decision"


class DecisionKind(str, Enum):
    SAME = "same"
    DIFFERENT = "different"


@dataclass(frozen=True)
class Decision:
    """The contributor's answer to "is this the same pole?"."""

    kind: DecisionKind
    target_id: str | None = None

    def __post_init__(self):
        if self.kind is DecisionKind.SAME and not self.target_id:
            raise InvalidAttemptError("a Same decision needs target_id")
        if self.kind is DecisionKind.DIFFERENT and self.target_id:
            raise InvalidAttemptError("a Different decision takes no target_id")

    @classmethod
    def same(cls, target_id: str) -> "Decision":
        return cls(DecisionKind.SAME, target_id)

    @classmethod
    def different(cls) -> "Decision":
        return cls(DecisionKind.DIFFERENT)


@dataclass
class Resolution:
    outcome: Outcome
    path: tuple[MatchState, ...]
    record: PoleRecord | None = None
    candidates: list[Candidate] = field(default_factory=list)
    # photo kinds the merge brought to a pole that lacked them
    added_evidence: frozenset[PhotoKind] = frozenset()

    @property
    def state(self) -> MatchState:
        return self.path[-1]

    @property
    def is_pending(self) -> bool:
        return self.outcome is Outcome.AWAITING_DECISION

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "state": self.state.value,
            "record": self.record.to_dict() if self.record else None,
            "candidates": [c.to_dict() for c in self.candidates],
            "added_evidence": sorted(e.value for e in self.added_evidence),
        }


class ProximityMatcher:
    def __init__(self, inventory: PoleInventory, config: EngineConfig | None = None):
        self.inventory = inventory
        self.config = config or EngineConfig()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def match_candidates(self, location: GeoPoint, radius_m: float | None = None) -> list[Candidate]:
        radius = self.config.dedup_radius_m if radius_m is None else radius_m
        candidates = self.inventory.match_candidates(location, radius)
        logger.debug("%d candidate(s) within %.1fm of %s", len(candidates), radius, location)
        return candidates

    def verification_candidates(self, location: GeoPoint) -> list[Candidate]:
        """Poles close enough to be verified from *location*; identifiers play no part."""
        return self.match_candidates(location, self.config.verification_radius_m)

    def is_verification_eligible(self, location: GeoPoint, pole_id: str | None = None) -> bool:
        candidates = self.verification_candidates(location)
        if pole_id is None:
            return bool(candidates)
        return any(c.record.id == pole_id for c in candidates)

    def nearby(self, location: GeoPoint) -> list[Candidate]:
        return self.match_candidates(location, self.config.nearby_display_radius_m)

    def find_by_identifier(self, normalized_id: str) -> PoleRecord:
        """Exact canonical lookup.  Raises PoleNotFoundError when nothing matches."""
        canonical = normalize(normalized_id)
        record = self.inventory.find_by_identifier(canonical) if canonical else None
        if record is None:
            raise PoleNotFoundError(f"No pole carries identifier '{canonical}'")
        return record

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, attempt: RegistrationAttempt, decision: Decision | None = None) -> Resolution:
        """
        Resolve a registration against the inventory.

        Without a decision: creates the pole when nothing is within the
        dedup radius, otherwise returns awaiting_decision with the sorted
        candidates.  With a decision: merges into the chosen candidate
        (Same) or creates a new pole inside the radius (Different).
        """
        if attempt.kind is not AttemptKind.REGISTRATION:
            raise InvalidAttemptError(
                f"{attempt.kind.value} targets an existing pole; use merge_into"
            )

        path: list[MatchState] = [MatchState.UNCHECKED]
        candidates = self.match_candidates(attempt.location)

        if not candidates and (decision is None or decision.kind is DecisionKind.DIFFERENT):
            path += [MatchState.NO_CANDIDATES, MatchState.AUTO_NEW]
            record = self.inventory.create(self._draft_for(attempt))
            logger.info("Created pole %s for contribution %s", record.id, attempt.contribution_id)
            return Resolution(Outcome.NEW, tuple(path), record, candidates)

        path += [MatchState.CANDIDATES_FOUND, MatchState.AWAITING_DECISION]
        if decision is None:
            return Resolution(Outcome.AWAITING_DECISION, tuple(path), None, candidates)

        if decision.kind is DecisionKind.DIFFERENT:
            path += [MatchState.DIFFERENT, MatchState.NEW]
            record = self.inventory.create(self._draft_for(attempt))
            logger.info(
                "Created pole %s alongside %d nearby pole(s) for contribution %s",
                record.id,
                len(candidates),
                attempt.contribution_id,
            )
            return Resolution(Outcome.NEW, tuple(path), record, candidates)

        if decision.target_id not in {c.record.id for c in candidates}:
            raise InvalidAttemptError(
                f"pole {decision.target_id} is not within {self.config.dedup_radius_m}m of the attempt"
            )
        path += [MatchState.SAME, MatchState.MERGED]
        before, after = self._merge(decision.target_id, attempt)
        return Resolution(
            Outcome.MERGED, tuple(path), after, candidates, after.evidence - before.evidence
        )

    def attach(self, attempt: RegistrationAttempt) -> Resolution:
        """Merge an attempt that names its existing pole directly."""
        if not attempt.is_additional_to_existing_pole or not attempt.target_pole_id:
            raise InvalidAttemptError("attach needs an attempt with target_pole_id")
        before, after = self._merge(attempt.target_pole_id, attempt)
        return Resolution(
            Outcome.MERGED,
            (MatchState.SAME, MatchState.MERGED),
            after,
            added_evidence=after.evidence - before.evidence,
        )

    def merge_into(self, target_id: str, attempt: RegistrationAttempt) -> PoleRecord:
        """
        Union the attempt's identifiers and photo evidence into *target_id*.

        Read-modify-write guarded by the record version.  Raises
        ConflictError when another writer got there first; nothing is
        written in that case.
        """
        return self._merge(target_id, attempt)[1]

    def _merge(self, target_id: str, attempt: RegistrationAttempt) -> tuple[PoleRecord, PoleRecord]:
        current = self.inventory.read(target_id)
        if current is None:
            raise InvalidAttemptError(f"target pole {target_id} does not exist")

        identifiers = current.identifiers | attempt.canonical_identifiers()
        evidence = current.evidence | attempt.photo_evidence
        if identifiers == current.identifiers and evidence == current.evidence:
            logger.debug("Merge into %s adds nothing new", target_id)
            return current, current

        patch = PolePatch(identifiers=identifiers, evidence=evidence)
        if not self.inventory.write_if_version(target_id, current.version, patch):
            logger.warning(
                "Merge into %s lost a concurrent update at version %d",
                target_id,
                current.version,
            )
            raise ConflictError(target_id, current.version)

        logger.info(
            "Merged contribution %s into pole %s (v%d → v%d)",
            attempt.contribution_id,
            target_id,
            current.version,
            current.version + 1,
        )
        return current, dataclasses.replace(current, **patch.apply(current))

    def apply_verification(
        self,
        pole: PoleRecord,
        verifier_id: str,
        verification_id: str,
        at: datetime | None = None,
    ) -> PoleRecord:
        """
        Record one verification of *pole* by *verifier_id*, version-checked
        like a merge.  A verification_id the pole already holds is a replay
        and writes nothing.
        """
        if verification_id in pole.verification_ids:
            logger.info("Verification %s of %s already recorded", verification_id, pole.id)
            return pole
        at = at or datetime.now(timezone.utc)
        patch = PolePatch(
            verification_count=pole.verification_count + 1,
            last_verified_at=at,
            new_verification=(verification_id, verifier_id),
        )
        if not self.inventory.write_if_version(pole.id, pole.version, patch):
            logger.warning("Verification of %s lost a concurrent update", pole.id)
            raise ConflictError(pole.id, pole.version)
        return dataclasses.replace(pole, **patch.apply(pole))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _draft_for(self, attempt: RegistrationAttempt) -> PoleDraft:
        identifiers = attempt.canonical_identifiers()
        if attempt.is_placeholder_only:
            placeholder = generate_placeholder_identifier()
            identifiers = frozenset({Identifier(canonical=placeholder, raw=placeholder)})
        return PoleDraft(
            location=attempt.location,
            identifiers=identifiers,
            evidence=attempt.photo_evidence,
            origin_contribution_id=attempt.contribution_id,
            origin_contributor_id=attempt.contributor_id,
            origin_scenario=attempt.scenario(),
        )
