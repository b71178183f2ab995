"""Unit tests for center_registry.errors: messages and the ActionResult shape."""

from __future__ import annotations

import pytest

from center_registry.errors import (
    ActionResult,
    ConstraintRaceError,
    DuplicateError,
    NotFoundError,
    SelfLinkError,
    SiblingRelationshipNotFound,
    ValidationError,
    duplicate_message,
    form_field,
)
from center_registry.models import Program


class TestDuplicateMessage:
    def test_email(self):
        assert (
            duplicate_message("email", Program.MAHAD)
            == "This email address is already registered for the Mahad program"
        )

    def test_phone(self):
        assert (
            duplicate_message("phone", Program.DUGSI)
            == "This phone number is already registered for the Dugsi program"
        )

    def test_both(self):
        assert duplicate_message("both", Program.MAHAD).startswith(
            "This email address and phone number are already registered"
        )


class TestExceptions:
    def test_validation_error_field(self):
        exc = ValidationError("firstName", "First name is required")
        assert exc.field == "firstName"
        assert str(exc) == "First name is required"

    def test_validation_error_rejects_unknown_field(self):
        with pytest.raises(ValueError):
            ValidationError("shoeSize", "bad")

    def test_duplicate_error_rejects_unknown_field(self):
        with pytest.raises(ValueError):
            DuplicateError("name", "p1", Program.MAHAD)

    def test_constraint_race_matches_duplicate_message(self):
        race = ConstraintRaceError("email", Program.MAHAD)
        dup = DuplicateError("email", "p1", Program.MAHAD)
        assert str(race) == str(dup)
        assert race.field == dup.field

    def test_constraint_race_without_program(self):
        assert str(ConstraintRaceError("phone")) == "This phone is already registered"

    def test_relationship_not_found_is_not_found(self):
        assert issubclass(SiblingRelationshipNotFound, NotFoundError)

    def test_self_link_message(self):
        assert str(SelfLinkError("p1")) == "Cannot add a person as their own sibling"


class TestFormField:
    def test_both_maps_to_email(self):
        assert form_field("both") == "email"

    def test_passthrough(self):
        assert form_field("phone") == "phone"
        assert form_field(None) is None


# ---------------------------------------------------------------------------
# ActionResult
# ---------------------------------------------------------------------------

class TestActionResult:
    def test_ok_to_dict(self):
        result = ActionResult.ok(id="pp1", name="Ahmed Hassan")
        assert result.to_dict() == {"success": True, "data": {"id": "pp1", "name": "Ahmed Hassan"}}

    def test_fail_without_field(self):
        assert ActionResult.fail("boom").to_dict() == {"success": False, "error": "boom"}

    def test_fail_with_field(self):
        d = ActionResult.fail("bad email", "email").to_dict()
        assert d == {"success": False, "error": "bad email", "field": "email"}

    def test_from_validation_error(self):
        d = ActionResult.from_error(ValidationError("dateOfBirth", "too young")).to_dict()
        assert d["field"] == "dateOfBirth"
        assert d["error"] == "too young"

    def test_from_duplicate_error_carries_person(self):
        exc = DuplicateError("both", "p1", Program.MAHAD, {"name": "Ahmed Hassan"})
        d = ActionResult.from_error(exc).to_dict()
        assert d["success"] is False
        assert d["field"] == "email"
        assert d["existingPersonId"] == "p1"
        assert d["program"] == "MAHAD_PROGRAM"
        assert d["existingPerson"] == {"name": "Ahmed Hassan"}

    def test_from_not_found_has_no_field(self):
        d = ActionResult.from_error(NotFoundError("Person not found")).to_dict()
        assert "field" not in d
