"""Tests for registration attempt validation."""

import pytest

from pole_registry.attempt_validator import validate_attempt
from pole_registry.errors import InvalidAttemptError
from pole_registry.models import RegistrationAttempt, Scenario


class TestValidateAttempt:
    def test_valid_registration(self, make_attempt):
        assert validate_attempt(make_attempt()) == []

    def test_valid_placeholder_registration(self, make_attempt):
        assert validate_attempt(make_attempt(identifiers=[], plate_count=0)) == []

    def test_identifiers_without_plate(self, make_attempt):
        errors = validate_attempt(make_attempt(plate_count=0))
        assert len(errors) == 1
        assert "plate_count is 0" in errors[0]

    def test_more_identifiers_than_plates(self, make_attempt):
        errors = validate_attempt(make_attempt(identifiers=["A1", "A2", "A3"], plate_count=2))
        assert errors == ["3 identifiers supplied for 2 plate(s)"]

    def test_fewer_identifiers_than_plates_allowed(self, make_attempt):
        assert validate_attempt(make_attempt(identifiers=["A1"], plate_count=2)) == []

    def test_blank_identifier(self, make_attempt):
        errors = validate_attempt(make_attempt(identifiers=["A1", " 　"], plate_count=2))
        assert errors == ["identifiers at positions [1] are empty after normalization"]

    def test_multiple_errors_collected(self, make_attempt):
        errors = validate_attempt(
            make_attempt(
                kind="photo_add",
                photo_evidence=set(),
                is_additional_to_existing_pole=True,
            )
        )
        assert "is_additional_to_existing_pole is set but target_pole_id is missing" in errors
        assert "photo_add requires at least one photo" in errors
        assert "photo_add cannot carry identifiers" in errors

    def test_registration_cannot_be_additional(self, make_attempt):
        errors = validate_attempt(
            make_attempt(is_additional_to_existing_pole=True, target_pole_id="pole-000001")
        )
        assert errors == ["a registration cannot be additional to an existing pole"]

    def test_existing_kind_needs_flag(self, make_attempt):
        errors = validate_attempt(make_attempt(kind="additional_identifier"))
        assert errors == ["additional_identifier must set is_additional_to_existing_pole"]


class TestRegistrationAttemptModel:
    def test_from_payload(self):
        attempt = RegistrationAttempt.from_payload({
            "contribution_id": "c-1",
            "latitude": 32.85,
            "longitude": 130.78,
            "location_source": "manual",
            "identifiers": ["247エ714"],
            "plate_count": 1,
            "photo_evidence": ["plate", "full"],
        })
        assert attempt.scenario() is Scenario.MANUAL_PHOTO
        assert attempt.has_full_photo

    def test_from_payload_rejects_bad_fields(self):
        with pytest.raises(InvalidAttemptError) as exc:
            RegistrationAttempt.from_payload({
                "contribution_id": "c-1",
                "latitude": 95.0,
                "longitude": 130.78,
                "location_source": "satellite",
                "plate_count": -1,
            })
        fields = " ".join(exc.value.errors)
        assert "latitude" in fields
        assert "location_source" in fields
        assert "plate_count" in fields

    @pytest.mark.parametrize(
        "source, photos, scenario",
        [
            ("gps", {"plate"}, Scenario.GPS_PHOTO),
            ("gps", {"full"}, Scenario.GPS_FULL_PHOTO),
            ("gps", set(), Scenario.GPS_NO_PHOTO),
            ("manual", {"detail"}, Scenario.MANUAL_PHOTO),
            ("manual", {"full"}, Scenario.MANUAL_PHOTO),
            ("manual", set(), Scenario.MANUAL_NO_PHOTO),
        ],
    )
    def test_scenario(self, make_attempt, source, photos, scenario):
        assert make_attempt(location_source=source, photo_evidence=photos).scenario() is scenario

    def test_canonical_identifiers_drop_blanks(self, make_attempt):
        attempt = make_attempt(identifiers=["２４７エ７１４", "247エ714"], plate_count=2)
        assert {i.canonical for i in attempt.canonical_identifiers()} == {"247エ714"}
