"""
Pole Registry — Contribution Reward Calculator

Turns a contribution into points.  The base award is a deterministic
function of the attempt's dimensions:

    location source  (gps | manual)
    photo evidence   (none | plate/detail | full)
    identifier       (printed plate | auto-generated #NoID placeholder)
    attempt kind     (registration | photo_add | additional_identifier |
                      identifier_completion)

Registrations with weak evidence carry a *pending* completion bonus that is
paid to the original contributor later, when a photo is added or when
enough independent verifications accumulate — whichever happens first.

Every payout goes through the score ledger under (ledger_key, bonus_type).
The ledger rejects duplicates; a rejection means "already paid" and the
bonus is simply left out of the returned breakdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable

from .attempt_validator import validate_attempt
from .config import EngineConfig
from .errors import InvalidAttemptError
from .ledger import LedgerEntry, LedgerResult, ScoreLedger
from .models import (
    AttemptKind,
    LikeRequest,
    PoleRecord,
    RegistrationAttempt,
    Scenario,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Point table. Every award in the engine reads its value from here.
# ---------------------------------------------------------------------------

POINTS: dict[str, int] = {
    # Registration, GPS location
    "gps_with_photo": 10,
    "gps_with_full_photo": 12,        # full photo bonus folded in
    "gps_without_photo": 6,
    "gps_without_photo_bonus": 4,     # photo added or three verifications
    # Registration, manual location
    "manual_with_photo": 3,
    "manual_with_photo_bonus": 2,     # three verifications
    "manual_without_photo": 0,
    "manual_without_photo_photo_bonus": 2,
    "manual_without_photo_verify_bonus": 3,
    # No plate on the pole
    "auto_id_penalty": 4,             # #NoID placeholder: GPS + photo → 6
    "no_id_manual": 10,               # identifier supplied later
    # Additions to an existing pole
    "photo_add": 3,
    "other_number_add": 10,           # co-mounted pole's second plate
    "full_photo_bonus": 2,
    # Verifier
    "verify_gps_with_photo": 2,
    "verify_gps_without_photo": 3,
    "verify_manual_with_photo": 3,
    "verify_manual_without_photo": 4,
    # Likes
    "like_received": 1,
    "like_given": 1,
    # Consecutive registration days
    "consecutive_3_days": 5,
    "consecutive_7_days": 15,
    "consecutive_30_days": 50,
}


class BonusType(str, Enum):
    BASE = "base"
    FULL_PHOTO = "full_photo"
    COMPLETION = "completion"
    VERIFICATION = "verification"
    LIKE_RECEIVED = "like_received"
    LIKE_GIVEN = "like_given"


class PendingTrigger(str, Enum):
    PHOTO_ADDED = "photo_added"
    TRIPLE_VERIFICATION = "triple_verification"


STREAK_MILESTONES: tuple[tuple[int, str], ...] = (
    (3, "consecutive_3_days"),
    (7, "consecutive_7_days"),
    (30, "consecutive_30_days"),
)


@dataclass(frozen=True)
class Rank:
    level: int
    name: str
    min_points: int


RANKS: tuple[Rank, ...] = (
    Rank(1, "Beginner", 0),
    Rank(2, "Apprentice", 50),
    Rank(3, "Regular", 100),
    Rank(4, "Skilled", 200),
    Rank(5, "Expert", 500),
    Rank(6, "Pro", 1000),
    Rank(7, "Master", 2000),
    Rank(8, "Grandmaster", 5000),
    Rank(9, "Legend", 10000),
    Rank(10, "Deity", 20000),
)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AwardedBonus:
    bonus_type: str
    points: int
    awarded_at: datetime
    recipient_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.bonus_type,
            "points": self.points,
            "awarded_at": self.awarded_at.isoformat(),
            "recipient_id": self.recipient_id,
        }


@dataclass(frozen=True)
class PendingBonus:
    """A completion bonus not yet earned, with the points each trigger would pay."""

    points_by_trigger: dict[PendingTrigger, int]
    bonus_type: str = BonusType.COMPLETION.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.bonus_type,
            "points_by_trigger": {t.value: p for t, p in self.points_by_trigger.items()},
        }


@dataclass
class ScoreBreakdown:
    """Points for one contribution.  Only entries accepted by the ledger appear."""

    base_points: int
    bonuses: list[AwardedBonus] = field(default_factory=list)
    pending: list[PendingBonus] = field(default_factory=list)
    already_paid: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.base_points + sum(b.points for b in self.bonuses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_points": self.base_points,
            "bonuses": [b.to_dict() for b in self.bonuses],
            "pending": [p.to_dict() for p in self.pending],
            "already_paid": self.already_paid,
            "total": self.total,
        }


@dataclass
class VerificationAward:
    verifier_points: int
    cooled_down: bool
    verification_count: int
    independent_verifications: int = 0
    completion: AwardedBonus | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "verifier_points": self.verifier_points,
            "cooled_down": self.cooled_down,
            "verification_count": self.verification_count,
            "independent_verifications": self.independent_verifications,
            "completion": self.completion.to_dict() if self.completion else None,
        }


@dataclass
class LikeAward:
    owner_points: int
    liker_points: int
    capped: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_points": self.owner_points,
            "liker_points": self.liker_points,
            "capped": self.capped,
        }


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


class RewardCalculator:
    """Point computation bound to one configuration and point table."""

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self.points = {**POINTS, **self.config.point_overrides}

        p = self.points
        self._registration_base = {
            Scenario.GPS_PHOTO: p["gps_with_photo"],
            Scenario.GPS_FULL_PHOTO: p["gps_with_full_photo"],
            Scenario.GPS_NO_PHOTO: p["gps_without_photo"],
            Scenario.MANUAL_PHOTO: p["manual_with_photo"],
            Scenario.MANUAL_NO_PHOTO: p["manual_without_photo"],
        }
        self._pending = {
            Scenario.GPS_NO_PHOTO: {
                PendingTrigger.PHOTO_ADDED: p["gps_without_photo_bonus"],
                PendingTrigger.TRIPLE_VERIFICATION: p["gps_without_photo_bonus"],
            },
            Scenario.MANUAL_PHOTO: {
                PendingTrigger.TRIPLE_VERIFICATION: p["manual_with_photo_bonus"],
            },
            Scenario.MANUAL_NO_PHOTO: {
                PendingTrigger.PHOTO_ADDED: p["manual_without_photo_photo_bonus"],
                PendingTrigger.TRIPLE_VERIFICATION: p["manual_without_photo_verify_bonus"],
            },
        }
        self._verifier = {
            Scenario.GPS_PHOTO: p["verify_gps_with_photo"],
            Scenario.GPS_FULL_PHOTO: p["verify_gps_with_photo"],
            Scenario.GPS_NO_PHOTO: p["verify_gps_without_photo"],
            Scenario.MANUAL_PHOTO: p["verify_manual_with_photo"],
            Scenario.MANUAL_NO_PHOTO: p["verify_manual_without_photo"],
        }

    # ------------------------------------------------------------------
    # Pure scoring
    # ------------------------------------------------------------------

    def pending_for(self, scenario: Scenario | None) -> dict[PendingTrigger, int]:
        if scenario is None:
            return {}
        return dict(self._pending.get(scenario, {}))

    def score_attempt(self, attempt: RegistrationAttempt, now: datetime | None = None) -> ScoreBreakdown:
        """
        Compute the breakdown for *attempt* without touching the ledger.

        Raises InvalidAttemptError when the attempt's dimensions contradict
        each other; no partial score is ever returned.
        """
        errors = validate_attempt(attempt)
        if errors:
            raise InvalidAttemptError(errors)

        now = now or datetime.now(timezone.utc)
        p = self.points
        bonuses: list[AwardedBonus] = []
        pending: list[PendingBonus] = []

        if attempt.kind is AttemptKind.REGISTRATION:
            scenario = attempt.scenario()
            base = self._registration_base[scenario]
            if attempt.is_placeholder_only:
                base = max(0, base - p["auto_id_penalty"])
            if attempt.has_full_photo and scenario is not Scenario.GPS_FULL_PHOTO:
                bonuses.append(AwardedBonus(
                    BonusType.FULL_PHOTO.value, p["full_photo_bonus"], now, attempt.contributor_id,
                ))
            triggers = self.pending_for(scenario)
            if triggers:
                pending.append(PendingBonus(points_by_trigger=triggers))

        elif attempt.kind is AttemptKind.PHOTO_ADD:
            base = p["photo_add"]
            if attempt.has_full_photo:
                bonuses.append(AwardedBonus(
                    BonusType.FULL_PHOTO.value, p["full_photo_bonus"], now, attempt.contributor_id,
                ))

        elif attempt.kind is AttemptKind.ADDITIONAL_IDENTIFIER:
            base = p["other_number_add"]

        else:
            base = p["no_id_manual"]

        return ScoreBreakdown(base_points=base, bonuses=bonuses, pending=pending)

    # ------------------------------------------------------------------
    # Ledger settlement
    # ------------------------------------------------------------------

    def compute_points(
        self,
        attempt: RegistrationAttempt,
        ledger: ScoreLedger,
        now: datetime | None = None,
    ) -> ScoreBreakdown:
        """
        Score *attempt* and pay it through the ledger.

        The base award is recorded under (contribution_id, "base") and each
        bonus under (contribution_id, bonus_type), all in one atomic append.
        Keys the ledger already holds are dropped from the breakdown.
        """
        now = now or datetime.now(timezone.utc)
        proposed = self.score_attempt(attempt, now)

        entries = [
            LedgerEntry(
                attempt.contribution_id,
                BonusType.BASE.value,
                proposed.base_points,
                attempt.contributor_id,
                now,
            )
        ]
        entries.extend(
            LedgerEntry(attempt.contribution_id, b.bonus_type, b.points, b.recipient_id, now)
            for b in proposed.bonuses
        )
        results = ledger.try_append_many(entries)

        breakdown = ScoreBreakdown(base_points=0, pending=proposed.pending)
        for entry, result in zip(entries, results):
            if result is LedgerResult.ALREADY_EXISTS:
                breakdown.already_paid.append(entry.bonus_type)
                continue
            if entry.bonus_type == BonusType.BASE.value:
                breakdown.base_points = entry.amount
            else:
                breakdown.bonuses.append(
                    AwardedBonus(entry.bonus_type, entry.amount, now, entry.recipient_id)
                )

        if breakdown.already_paid:
            logger.info(
                "Contribution %s: %s already paid, omitted",
                attempt.contribution_id,
                ", ".join(breakdown.already_paid),
            )
        logger.info(
            "Contribution %s (%s) scored %d points",
            attempt.contribution_id,
            attempt.kind.value,
            breakdown.total,
        )
        return breakdown

    def complete_pending_bonus(
        self,
        pole: PoleRecord,
        trigger: PendingTrigger,
        ledger: ScoreLedger,
        now: datetime | None = None,
    ) -> AwardedBonus | None:
        """
        Pay the original contributor's completion bonus for *pole*.

        Both triggers share one ledger key, so only the first one to fire
        pays.  Returns None when nothing is pending for this trigger or the
        bonus was already paid.
        """
        entry = self._completion_entry(pole, trigger, now or datetime.now(timezone.utc))
        if entry is None:
            return None
        if ledger.try_append(entry) is LedgerResult.ALREADY_EXISTS:
            logger.debug("Completion bonus for %s already paid", pole.origin_contribution_id)
            return None
        logger.info(
            "Completion bonus %d paid for contribution %s (%s)",
            entry.amount,
            pole.origin_contribution_id,
            trigger.value,
        )
        return AwardedBonus(entry.bonus_type, entry.amount, entry.awarded_at, entry.recipient_id)

    def _completion_entry(
        self, pole: PoleRecord, trigger: PendingTrigger, now: datetime
    ) -> LedgerEntry | None:
        points = self.pending_for(pole.origin_scenario).get(trigger)
        if points is None or not pole.origin_contribution_id:
            return None
        return LedgerEntry(
            pole.origin_contribution_id,
            BonusType.COMPLETION.value,
            points,
            pole.origin_contributor_id,
            now,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    @staticmethod
    def check_verifier(pole: PoleRecord, verifier_id: str) -> None:
        if pole.origin_contributor_id and verifier_id == pole.origin_contributor_id:
            raise InvalidAttemptError("contributors cannot verify their own pole")

    def compute_verification_points(
        self,
        pole: PoleRecord,
        verifier_id: str,
        verification_id: str,
        ledger: ScoreLedger,
        now: datetime | None = None,
    ) -> VerificationAward:
        """
        Award a verification of *pole* (the record as it was before this
        verification).

        The verifier earns nothing when the pole was last verified less than
        cool_down_days ago, but the verification still counts toward the
        triple-verification completion bonus.  That bonus needs
        completion_verification_count distinct verifiers; a second visit by
        the same verifier does not advance it.  A verification_id the pole
        already holds is a replay and pays nothing new.
        """
        self.check_verifier(pole, verifier_id)

        now = now or datetime.now(timezone.utc)
        replay = verification_id in pole.verification_ids
        if replay:
            count = pole.verification_count
            verifiers = pole.verifier_ids
        else:
            count = pole.verification_count + 1
            verifiers = pole.verifier_ids | {verifier_id}
        cooled_down = (
            pole.last_verified_at is not None
            and now - pole.last_verified_at < timedelta(days=self.config.cool_down_days)
        )
        scenario = pole.origin_scenario or Scenario.GPS_PHOTO
        points = 0 if cooled_down or replay else self._verifier[scenario]

        entries: list[LedgerEntry] = []
        if points:
            entries.append(LedgerEntry(
                verification_id, BonusType.VERIFICATION.value, points, verifier_id, now,
            ))
        completion_entry = None
        if len(verifiers) >= self.config.completion_verification_count:
            completion_entry = self._completion_entry(pole, PendingTrigger.TRIPLE_VERIFICATION, now)
            if completion_entry is not None:
                entries.append(completion_entry)

        results = dict(zip((e.key for e in entries), ledger.try_append_many(entries)))

        if points and results.get((verification_id, BonusType.VERIFICATION.value)) is not LedgerResult.ACCEPTED:
            points = 0
        completion = None
        if completion_entry is not None and results.get(completion_entry.key) is LedgerResult.ACCEPTED:
            completion = AwardedBonus(
                completion_entry.bonus_type,
                completion_entry.amount,
                now,
                completion_entry.recipient_id,
            )

        if replay:
            logger.info("Verification %s of %s is a replay, nothing new paid", verification_id, pole.id)
        elif cooled_down:
            logger.info(
                "Verification %s of %s inside %d-day cool-down, no verifier points",
                verification_id,
                pole.id,
                self.config.cool_down_days,
            )
        return VerificationAward(
            verifier_points=points,
            cooled_down=cooled_down,
            verification_count=count,
            independent_verifications=len(verifiers),
            completion=completion,
        )

    # ------------------------------------------------------------------
    # Likes, streaks, ranks
    # ------------------------------------------------------------------

    def compute_like_points(
        self,
        like: LikeRequest,
        ledger: ScoreLedger,
        now: datetime | None = None,
    ) -> LikeAward:
        """+1 to the photo owner and +1 to the liker, until the liker's daily cap."""
        if like.liker_id == like.photo_owner_id:
            raise InvalidAttemptError("users cannot like their own photo")

        if like.likes_given_today >= self.config.like_daily_limit:
            logger.debug("Liker %s reached the daily like cap", like.liker_id)
            return LikeAward(owner_points=0, liker_points=0, capped=True)

        now = now or datetime.now(timezone.utc)
        received, given = ledger.try_append_many([
            LedgerEntry(like.like_id, BonusType.LIKE_RECEIVED.value,
                        self.points["like_received"], like.photo_owner_id, now),
            LedgerEntry(like.like_id, BonusType.LIKE_GIVEN.value,
                        self.points["like_given"], like.liker_id, now),
        ])
        return LikeAward(
            owner_points=self.points["like_received"] if received is LedgerResult.ACCEPTED else 0,
            liker_points=self.points["like_given"] if given is LedgerResult.ACCEPTED else 0,
            capped=False,
        )

    def compute_streak_bonus(
        self,
        contributor_id: str,
        registration_dates: Iterable[date],
        today: date,
        ledger: ScoreLedger,
    ) -> list[AwardedBonus]:
        """
        Pay consecutive-day registration milestones (3, 7 and 30 days).

        The streak is the run of consecutive days ending *today*.  Each
        milestone is keyed by the streak's first day, so it pays once per
        streak and again only after the streak breaks and regrows.
        """
        days = set(registration_dates)
        streak = 0
        while today - timedelta(days=streak) in days:
            streak += 1
        if streak == 0:
            return []

        start = today - timedelta(days=streak - 1)
        key = f"streak:{contributor_id}:{start.isoformat()}"
        awarded_at = datetime.combine(today, datetime.min.time(), tzinfo=timezone.utc)
        entries = [
            LedgerEntry(key, name, self.points[name], contributor_id, awarded_at)
            for length, name in STREAK_MILESTONES
            if streak >= length
        ]
        results = ledger.try_append_many(entries)
        return [
            AwardedBonus(e.bonus_type, e.amount, e.awarded_at, e.recipient_id)
            for e, r in zip(entries, results)
            if r is LedgerResult.ACCEPTED
        ]


def rank_for_points(total_points: int) -> Rank:
    """Highest rank whose threshold *total_points* reaches."""
    current = RANKS[0]
    for rank in RANKS:
        if total_points >= rank.min_points:
            current = rank
    return current


# ---------------------------------------------------------------------------
# Module-level convenience (default configuration)
# ---------------------------------------------------------------------------


def score_attempt(attempt: RegistrationAttempt, config: EngineConfig | None = None) -> ScoreBreakdown:
    """Pure breakdown for *attempt*; nothing is written."""
    return RewardCalculator(config).score_attempt(attempt)


def compute_points(
    attempt: RegistrationAttempt,
    ledger: ScoreLedger,
    config: EngineConfig | None = None,
) -> ScoreBreakdown:
    """Score *attempt* and settle it against *ledger*."""
    return RewardCalculator(config).compute_points(attempt, ledger)
