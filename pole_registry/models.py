"""Domain types and pydantic request models for the Pole Registry engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .algorithms.geo_proximity import GeoPoint
from .algorithms.normalizer import normalize
from .errors import InvalidAttemptError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PhotoKind(str, Enum):
    PLATE = "plate"
    FULL = "full"
    DETAIL = "detail"


class LocationSource(str, Enum):
    GPS = "gps"
    MANUAL = "manual"


class AttemptKind(str, Enum):
    REGISTRATION = "registration"
    PHOTO_ADD = "photo_add"
    ADDITIONAL_IDENTIFIER = "additional_identifier"
    IDENTIFIER_COMPLETION = "identifier_completion"


# Kinds that act on a pole that already exists
EXISTING_POLE_KINDS = frozenset({
    AttemptKind.PHOTO_ADD,
    AttemptKind.ADDITIONAL_IDENTIFIER,
    AttemptKind.IDENTIFIER_COMPLETION,
})


class Scenario(str, Enum):
    """Location source × photo evidence of a first registration."""

    GPS_PHOTO = "gps_photo"
    GPS_FULL_PHOTO = "gps_full_photo"
    GPS_NO_PHOTO = "gps_no_photo"
    MANUAL_PHOTO = "manual_photo"
    MANUAL_NO_PHOTO = "manual_no_photo"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    HIGHLY_VERIFIED = "highly_verified"


HIGHLY_VERIFIED_THRESHOLD = 3


# ---------------------------------------------------------------------------
# Identifiers and pole records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identifier:
    """A plate identifier.  Equality and hashing use the canonical form only."""

    canonical: str
    raw: str = field(default="", compare=False)

    @classmethod
    def from_raw(cls, raw: str) -> "Identifier":
        return cls(canonical=normalize(raw), raw=raw)


@dataclass(frozen=True)
class PoleRecord:
    id: str
    location: GeoPoint
    identifiers: frozenset[Identifier] = frozenset()
    evidence: frozenset[PhotoKind] = frozenset()
    verification_count: int = 0
    last_verified_at: datetime | None = None
    version: int = 1
    origin_contribution_id: str | None = None
    origin_contributor_id: str | None = None
    origin_scenario: Scenario | None = None
    verification_ids: frozenset[str] = frozenset()
    verifier_ids: frozenset[str] = frozenset()

    @property
    def canonical_identifiers(self) -> frozenset[str]:
        return frozenset(i.canonical for i in self.identifiers)

    @property
    def independent_verifications(self) -> int:
        """Distinct verifiers; repeat visits by one verifier count once."""
        return len(self.verifier_ids)

    @property
    def verification_status(self) -> VerificationStatus:
        if self.verification_count >= HIGHLY_VERIFIED_THRESHOLD:
            return VerificationStatus.HIGHLY_VERIFIED
        if self.verification_count > 0:
            return VerificationStatus.VERIFIED
        return VerificationStatus.UNVERIFIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "identifiers": sorted(self.canonical_identifiers),
            "evidence": sorted(e.value for e in self.evidence),
            "verification_count": self.verification_count,
            "independent_verifications": self.independent_verifications,
            "verification_status": self.verification_status.value,
            "last_verified_at": self.last_verified_at.isoformat() if self.last_verified_at else None,
            "version": self.version,
            "origin_contribution_id": self.origin_contribution_id,
            "origin_contributor_id": self.origin_contributor_id,
            "origin_scenario": self.origin_scenario.value if self.origin_scenario else None,
        }


@dataclass(frozen=True)
class PoleDraft:
    """A pole about to be created by the inventory (no id or version yet)."""

    location: GeoPoint
    identifiers: frozenset[Identifier] = frozenset()
    evidence: frozenset[PhotoKind] = frozenset()
    origin_contribution_id: str | None = None
    origin_contributor_id: str | None = None
    origin_scenario: Scenario | None = None


@dataclass(frozen=True)
class PolePatch:
    """Fields to overwrite in a conditional write.  None means unchanged."""

    identifiers: frozenset[Identifier] | None = None
    evidence: frozenset[PhotoKind] | None = None
    verification_count: int | None = None
    last_verified_at: datetime | None = None
    new_verification: tuple[str, str] | None = None   # (verification_id, verifier_id)

    def apply(self, record: PoleRecord) -> dict[str, Any]:
        """Return the changed fields as keyword arguments for dataclasses.replace."""
        changes: dict[str, Any] = {}
        if self.identifiers is not None:
            changes["identifiers"] = self.identifiers
        if self.evidence is not None:
            changes["evidence"] = self.evidence
        if self.verification_count is not None:
            changes["verification_count"] = self.verification_count
        if self.last_verified_at is not None:
            changes["last_verified_at"] = self.last_verified_at
        if self.new_verification is not None:
            verification_id, verifier_id = self.new_verification
            changes["verification_ids"] = record.verification_ids | {verification_id}
            changes["verifier_ids"] = record.verifier_ids | {verifier_id}
        changes["version"] = record.version + 1
        return changes


# ---------------------------------------------------------------------------
# Registration attempt (request model)
# ---------------------------------------------------------------------------


class RegistrationAttempt(BaseModel):
    kind: AttemptKind = Field(
        AttemptKind.REGISTRATION,
        description="registration, photo_add, additional_identifier or identifier_completion",
    )
    contribution_id: str = Field(
        ...,
        min_length=1,
        description="Caller-supplied idempotency key for this contribution",
    )
    contributor_id: str | None = Field(
        None,
        description="ID of the contributing user",
    )
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    location_source: LocationSource = Field(
        ...,
        description="gps when captured from device geolocation, manual when pinned on a map",
    )
    identifiers: list[str] = Field(
        default_factory=list,
        description="Raw identifiers as printed on the plates (may be empty)",
    )
    plate_count: int = Field(
        0,
        ge=0,
        description="Number of identification plates on the pole",
    )
    photo_evidence: frozenset[PhotoKind] = Field(
        default_factory=frozenset,
        description="Photo kinds attached to this attempt",
    )
    is_additional_to_existing_pole: bool = Field(
        False,
        description="True when the attempt adds to a pole that already exists",
    )
    target_pole_id: str | None = Field(
        None,
        description="Existing pole targeted by photo/identifier additions",
    )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RegistrationAttempt":
        """Build an attempt from an untyped request body."""
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'attempt'}: {err['msg']}"
                for err in e.errors()
            ]
            raise InvalidAttemptError(errors) from e

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

    @property
    def has_photo(self) -> bool:
        return bool(self.photo_evidence)

    @property
    def has_full_photo(self) -> bool:
        return PhotoKind.FULL in self.photo_evidence

    @property
    def is_placeholder_only(self) -> bool:
        """No plate on the pole, so an auto-generated placeholder identifies it."""
        return self.plate_count == 0 and not self.identifiers

    def canonical_identifiers(self) -> frozenset[Identifier]:
        return frozenset(
            Identifier.from_raw(raw) for raw in self.identifiers if normalize(raw)
        )

    def scenario(self) -> Scenario:
        if self.location_source is LocationSource.GPS:
            if self.has_full_photo:
                return Scenario.GPS_FULL_PHOTO
            return Scenario.GPS_PHOTO if self.has_photo else Scenario.GPS_NO_PHOTO
        return Scenario.MANUAL_PHOTO if self.has_photo else Scenario.MANUAL_NO_PHOTO


# ---------------------------------------------------------------------------
# Verifications and likes
# ---------------------------------------------------------------------------


class VerificationRequest(BaseModel):
    verification_id: str = Field(..., min_length=1, description="Idempotency key for this verification")
    pole_id: str
    verifier_id: str
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


class LikeRequest(BaseModel):
    like_id: str = Field(..., min_length=1, description="Idempotency key for this like")
    photo_id: str
    photo_owner_id: str
    liker_id: str
    likes_given_today: int = Field(
        0,
        ge=0,
        description="Likes the liker has already given today, excluding this one",
    )
