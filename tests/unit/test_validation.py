"""Unit tests for center_registry.validation."""

from __future__ import annotations

from datetime import date

import pytest

from center_registry.config import RegistrationConfig
from center_registry.errors import ValidationError
from center_registry.models import Program
from center_registry.validation import validate_registration, validate_sibling_ids

TODAY = date(2025, 9, 1)
DEFAULT = RegistrationConfig()
EITHER_CONTACT = RegistrationConfig(require_email=False, require_phone=False)


def _payload(**overrides) -> dict:
    payload = {
        "firstName": "ahmed",
        "lastName": "hassan",
        "email": "Ahmed@Test.com",
        "phone": "612-555-1234",
        "dateOfBirth": "2005-03-01",
        "program": "MAHAD_PROGRAM",
    }
    payload.update(overrides)
    return payload


def _error(payload: dict, config: RegistrationConfig = DEFAULT) -> ValidationError:
    with pytest.raises(ValidationError) as exc_info:
        validate_registration(payload, config, today=TODAY)
    return exc_info.value


class TestValidPayload:
    def test_normalizes_fields(self):
        data = validate_registration(_payload(), DEFAULT, today=TODAY)
        assert data.full_name == "Ahmed Hassan"
        assert data.email == "ahmed@test.com"
        assert data.phone == "6125551234"
        assert data.date_of_birth == date(2005, 3, 1)
        assert data.program == Program.MAHAD
        assert data.profile_fields == {}

    def test_date_of_birth_optional(self):
        data = validate_registration(_payload(dateOfBirth=None), DEFAULT, today=TODAY)
        assert data.date_of_birth is None

    def test_profile_fields_copied(self):
        payload = _payload(schoolName="  Roosevelt  High ", gradeLevel="GRADE_11")
        data = validate_registration(payload, DEFAULT, today=TODAY)
        assert data.profile_fields == {"school_name": "Roosevelt High", "grade_level": "GRADE_11"}

    def test_phone_alone_when_email_optional(self):
        data = validate_registration(_payload(email=None), EITHER_CONTACT, today=TODAY)
        assert data.email is None
        assert data.phone == "6125551234"


class TestNameRules:
    def test_missing_first_name(self):
        err = _error(_payload(firstName="  "))
        assert (err.field, str(err)) == ("firstName", "First name is required")

    def test_short_last_name(self):
        err = _error(_payload(lastName="H"))
        assert (err.field, str(err)) == ("lastName", "Last name must be at least 2 characters")

    def test_digits_rejected(self):
        err = _error(_payload(firstName="Ahmed2"))
        assert str(err) == "First name can only contain letters, spaces, and hyphens"

    def test_hyphen_allowed(self):
        data = validate_registration(_payload(lastName="al-amin"), DEFAULT, today=TODAY)
        assert data.full_name == "Ahmed Al-Amin"


class TestContactRules:
    def test_email_required(self):
        err = _error(_payload(email=""))
        assert (err.field, str(err)) == ("email", "Email is required")

    def test_bad_email(self):
        assert str(_error(_payload(email="ahmed.test.com"))) == "Please enter a valid email address"

    def test_phone_required(self):
        err = _error(_payload(phone=None))
        assert (err.field, str(err)) == ("phone", "Phone number is required")

    def test_bad_phone(self):
        err = _error(_payload(phone="555-1234"))
        assert str(err) == "Enter a valid phone number (XXX-XXX-XXXX)"

    def test_neither_contact(self):
        err = _error(_payload(email=None, phone=None), EITHER_CONTACT)
        assert (err.field, str(err)) == ("email", "An email address or phone number is required")


class TestProgramRules:
    def test_unknown_program(self):
        err = _error(_payload(program="QURAN_CLUB"))
        assert err.field == "program"
        assert str(err).startswith("Unknown program")

    def test_closed_program(self):
        config = RegistrationConfig(enabled_programs=frozenset({Program.DUGSI}))
        err = _error(_payload(), config)
        assert str(err) == "Registration for Mahad is currently closed"


class TestDateOfBirthRules:
    def test_unparseable(self):
        assert str(_error(_payload(dateOfBirth="last spring"))) == "Please enter a valid date of birth"

    def test_future(self):
        err = _error(_payload(dateOfBirth="2026-01-01"))
        assert (err.field, str(err)) == ("dateOfBirth", "Date of birth cannot be in the future")

    def test_too_young_for_mahad(self):
        err = _error(_payload(dateOfBirth="2012-01-01"))
        assert str(err) == "Student must be between 15 and 100 years old"

    def test_age_boundary_is_inclusive(self):
        data = validate_registration(_payload(dateOfBirth="2010-09-01"), DEFAULT, today=TODAY)
        assert data.date_of_birth == date(2010, 9, 1)

    def test_one_day_short_of_fifteen(self):
        err = _error(_payload(dateOfBirth="2010-09-02"))
        assert err.field == "dateOfBirth"

    def test_dugsi_range(self):
        err = _error(_payload(program="DUGSI_PROGRAM", dateOfBirth="2005-03-01"))
        assert str(err) == "Student must be between 5 and 18 years old"


class TestSchoolName:
    def test_invalid_characters(self):
        err = _error(_payload(schoolName="Roosevelt <High>"))
        assert err.field == "schoolName"


class TestValidateSiblingIds:
    def test_none(self):
        assert validate_sibling_ids(None, DEFAULT) == []

    def test_dedupes_and_strips_keeping_order(self):
        assert validate_sibling_ids([" b", "a", "b", ""], DEFAULT) == ["b", "a"]

    def test_cap(self):
        config = RegistrationConfig(max_siblings_per_registration=2)
        with pytest.raises(ValidationError) as exc_info:
            validate_sibling_ids(["a", "b", "c"], config)
        assert exc_info.value.field == "siblings"
        assert str(exc_info.value) == "A registration can link at most 2 siblings"
