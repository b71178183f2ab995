"""Unit tests for center_registry.duplicate_detection with lookups monkeypatched."""

from __future__ import annotations

from datetime import datetime

import pytest

from center_registry import people
from center_registry.duplicate_detection import (
    check_duplicate,
    choose_match,
    is_email_registered,
    is_phone_registered,
)
from center_registry.models import (
    ContactPoint,
    ContactType,
    EnrollmentStatus,
    Person,
    Program,
    ProgramProfile,
)


def _person(pid: str, email: str | None, phone: str | None, profiles=()) -> Person:
    contacts = []
    if email:
        contacts.append(ContactPoint(pid, ContactType.EMAIL, email, is_primary=True))
    if phone:
        contacts.append(ContactPoint(pid, ContactType.PHONE, phone, is_primary=True))
    return Person(
        id=pid,
        name=f"Person {pid}",
        created_at=datetime(2025, 1, 5, 9, 30),
        contact_points=contacts,
        profiles=list(profiles),
    )


def _mahad(pid: str, status=EnrollmentStatus.ENROLLED, open_enrollments=1) -> ProgramProfile:
    return ProgramProfile(
        f"pp-{pid}", pid, Program.MAHAD, status,
        created_at=datetime(2025, 2, 1), open_enrollments=open_enrollments,
    )


class Directory:
    """Stands in for contact_point lookups keyed by normalized value."""

    def __init__(self, persons: list[Person]):
        self.persons = {p.id: p for p in persons}
        self.lookups: list[tuple[str, str]] = []

    def by_email(self, conn, email_norm):
        self.lookups.append(("email", email_norm))
        return sorted(
            p.id for p in self.persons.values() if p.has_contact(ContactType.EMAIL, email_norm)
        )

    def by_phone(self, conn, phone_norm):
        self.lookups.append(("phone", phone_norm))
        return sorted(
            p.id for p in self.persons.values() if p.has_contact(ContactType.PHONE, phone_norm)
        )

    def fetch(self, conn, person_id):
        return self.persons.get(person_id)


@pytest.fixture
def directory(monkeypatch):
    def _install(persons: list[Person]) -> Directory:
        d = Directory(persons)
        monkeypatch.setattr(people, "find_person_ids_by_email", d.by_email)
        monkeypatch.setattr(people, "find_person_ids_by_phone", d.by_phone)
        monkeypatch.setattr(people, "fetch_person", d.fetch)
        return d
    return _install


# ---------------------------------------------------------------------------
# choose_match
# ---------------------------------------------------------------------------

class TestChooseMatch:
    def test_no_matches(self):
        assert choose_match([], []) == (None, None, None)

    def test_email_only(self):
        assert choose_match(["p1"], []) == ("p1", "email", None)

    def test_phone_only(self):
        assert choose_match([], ["p2"]) == ("p2", "phone", None)

    def test_same_person_is_both(self):
        assert choose_match(["p1"], ["p1"]) == ("p1", "both", None)

    def test_different_people_email_wins(self):
        assert choose_match(["p1"], ["p2"]) == ("p1", "email", "p2")

    def test_email_owner_also_among_phone_owners(self):
        assert choose_match(["p2"], ["p1", "p2"]) == ("p2", "both", None)


# ---------------------------------------------------------------------------
# check_duplicate
# ---------------------------------------------------------------------------

class TestCheckDuplicate:
    def test_both_inputs_invalid_skips_lookup(self, fake_conn, directory):
        d = directory([])
        result = check_duplicate(fake_conn, "not-an-email", "12345", Program.MAHAD)
        assert not result.is_duplicate
        assert d.lookups == []

    def test_no_owner(self, fake_conn, directory):
        directory([_person("p1", "other@test.com", None)])
        result = check_duplicate(fake_conn, "ahmed@test.com", None, Program.MAHAD)
        assert result.to_dict()["isDuplicate"] is False
        assert result.person_id is None

    def test_email_variants_collide(self, fake_conn, directory):
        directory([_person("p1", "ahmed@test.com", None, [_mahad("p1")])])
        result = check_duplicate(fake_conn, "  AHMED@Test.com ", None, Program.MAHAD)
        assert result.is_duplicate
        assert result.duplicate_field == "email"
        assert result.has_active_profile

    def test_phone_variants_collide(self, fake_conn, directory):
        d = directory([_person("p1", None, "6125551234", [_mahad("p1")])])
        result = check_duplicate(fake_conn, None, "(612) 555-1234", Program.MAHAD)
        assert result.duplicate_field == "phone"
        assert result.person_id == "p1"
        assert d.lookups == [("phone", "6125551234")]

    def test_same_person_owns_both(self, fake_conn, directory):
        directory([_person("p1", "ahmed@test.com", "6125551234", [_mahad("p1")])])
        result = check_duplicate(fake_conn, "ahmed@test.com", "612-555-1234", Program.MAHAD)
        assert result.duplicate_field == "both"
        assert result.conflicting_person_id is None
        assert result.warnings == []

    def test_email_wins_over_phone_owner(self, fake_conn, directory):
        directory([
            _person("p1", "ahmed@test.com", None),
            _person("p2", None, "6125551234"),
        ])
        result = check_duplicate(fake_conn, "ahmed@test.com", "6125551234", Program.MAHAD)
        assert result.person_id == "p1"
        assert result.duplicate_field == "email"
        assert result.conflicting_person_id == "p2"
        assert any("email match wins" in w for w in result.warnings)

    def test_withdrawn_profile_is_not_active(self, fake_conn, directory):
        directory([
            _person("p1", "ahmed@test.com", None,
                    [_mahad("p1", EnrollmentStatus.WITHDRAWN, open_enrollments=0)]),
        ])
        result = check_duplicate(fake_conn, "ahmed@test.com", None, Program.MAHAD)
        assert result.is_duplicate
        assert not result.has_active_profile
        assert result.active_profile is None
        assert result.existing_person.enrollment_status == "Withdrawn"

    def test_profile_in_other_program_is_not_active(self, fake_conn, directory):
        directory([_person("p1", "ahmed@test.com", None, [_mahad("p1")])])
        result = check_duplicate(fake_conn, "ahmed@test.com", None, Program.DUGSI)
        assert result.is_duplicate
        assert not result.has_active_profile
        assert result.existing_person.enrollment_status is None

    def test_existing_person_summary(self, fake_conn, directory):
        directory([_person("p1", "ahmed@test.com", "6125551234", [_mahad("p1")])])
        result = check_duplicate(fake_conn, "ahmed@test.com", None, Program.MAHAD)
        summary = result.to_dict()["existingPerson"]
        assert summary == {
            "personId": "p1",
            "name": "Person p1",
            "email": "ahmed@test.com",
            "phone": "6125551234",
            "registeredDate": "Feb 1, 2025",
            "enrollmentStatus": "Enrolled",
            "program": "Mahad",
        }
        assert result.to_dict()["activeProfile"]["id"] == "pp-p1"

    def test_multiple_owners_warns_and_picks_first(self, fake_conn, directory):
        directory([
            _person("p2", "shared@test.com", None),
            _person("p1", "shared@test.com", None),
        ])
        result = check_duplicate(fake_conn, "shared@test.com", None, Program.MAHAD)
        assert result.person_id == "p1"
        assert any("active on 2 people" in w for w in result.warnings)


class TestIsRegistered:
    def test_email_registered(self, fake_conn, directory):
        directory([_person("p1", "ahmed@test.com", "6125551234", [_mahad("p1")])])
        assert is_email_registered(fake_conn, "ahmed@test.com", Program.MAHAD)
        assert not is_email_registered(fake_conn, "ahmed@test.com", Program.DUGSI)

    def test_phone_registered(self, fake_conn, directory):
        directory([_person("p1", None, "6125551234", [_mahad("p1")])])
        assert is_phone_registered(fake_conn, "612.555.1234", Program.MAHAD)
        assert not is_phone_registered(fake_conn, "6125559999", Program.MAHAD)
