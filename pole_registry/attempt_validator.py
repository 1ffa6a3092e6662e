"""Dimension validation for registration attempts.

An attempt is scored from several orthogonal dimensions (location source,
photo evidence, plate count, identifiers, whether it targets an existing
pole).  Combinations that contradict each other, or that fall outside the
point table, are rejected here before anything is written or scored.
Uses simple checks on the parsed model and returns error strings.
"""

from __future__ import annotations

from .algorithms.normalizer import normalize
from .models import EXISTING_POLE_KINDS, AttemptKind, RegistrationAttempt


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_attempt(attempt: RegistrationAttempt) -> list[str]:
    """Validate *attempt* as a whole.

    Returns a list of human-readable error strings.  Empty list = valid.
    """
    errors: list[str] = []
    errors.extend(_validate_identifiers(attempt))
    errors.extend(_validate_target(attempt))
    errors.extend(_KIND_VALIDATORS[attempt.kind](attempt))
    return errors


# ---------------------------------------------------------------------------
# Shared checks
# ---------------------------------------------------------------------------


def _validate_identifiers(attempt: RegistrationAttempt) -> list[str]:
    errors: list[str] = []
    if attempt.plate_count == 0 and attempt.identifiers:
        errors.append(
            f"plate_count is 0 but {len(attempt.identifiers)} identifier(s) were supplied"
        )
    elif len(attempt.identifiers) > attempt.plate_count:
        errors.append(
            f"{len(attempt.identifiers)} identifiers supplied for {attempt.plate_count} plate(s)"
        )

    blank = [i for i, raw in enumerate(attempt.identifiers) if not normalize(raw)]
    if blank:
        errors.append(f"identifiers at positions {blank} are empty after normalization")
    return errors


def _validate_target(attempt: RegistrationAttempt) -> list[str]:
    errors: list[str] = []
    if attempt.is_additional_to_existing_pole and not attempt.target_pole_id:
        errors.append("is_additional_to_existing_pole is set but target_pole_id is missing")

    requires_existing = attempt.kind in EXISTING_POLE_KINDS
    if requires_existing and not attempt.is_additional_to_existing_pole:
        errors.append(f"{attempt.kind.value} must set is_additional_to_existing_pole")
    if not requires_existing and attempt.is_additional_to_existing_pole:
        errors.append("a registration cannot be additional to an existing pole")
    return errors


# ---------------------------------------------------------------------------
# Per-kind validators
# ---------------------------------------------------------------------------


def _validate_registration(attempt: RegistrationAttempt) -> list[str]:
    if attempt.plate_count > 0 and not attempt.identifiers:
        return [f"plate_count is {attempt.plate_count} but no identifiers were supplied"]
    return []


def _validate_photo_add(attempt: RegistrationAttempt) -> list[str]:
    errors: list[str] = []
    if not attempt.photo_evidence:
        errors.append("photo_add requires at least one photo")
    if attempt.identifiers:
        errors.append("photo_add cannot carry identifiers")
    return errors


def _validate_identifier_addition(attempt: RegistrationAttempt) -> list[str]:
    if not attempt.identifiers:
        return [f"{attempt.kind.value} requires at least one identifier"]
    return []


_KIND_VALIDATORS = {
    AttemptKind.REGISTRATION: _validate_registration,
    AttemptKind.PHOTO_ADD: _validate_photo_add,
    AttemptKind.ADDITIONAL_IDENTIFIER: _validate_identifier_addition,
    AttemptKind.IDENTIFIER_COMPLETION: _validate_identifier_addition,
}
