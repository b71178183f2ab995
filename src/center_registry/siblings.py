"""center_registry.siblings

Sibling relationship linking.

A sibling relationship is one undirected edge per pair of people, stored
with person1_id < person2_id (canonical pair ordering) so (A, B) and (B, A)
resolve to the same row.  Edge lifecycle:

    NONE -> ACTIVE        link (INSERT)
    ACTIVE -> INACTIVE    unlink (soft delete, row kept)
    INACTIVE -> ACTIVE    re-link reactivates the existing row

Bulk linking (link_siblings) runs each pair under its own SAVEPOINT so one
bad pair never aborts the others; outcomes are counted, not raised:

    added     new edge or reactivated edge
    failed    pair raised (unknown person, DB error); reason in failures
    skipped   self-link or edge already active; neither added nor failed

Self-links are rejected by one rule everywhere (SelfLinkError).  Bulk
linking reports them in `skipped`; the single-pair admin action add_sibling
reports them as a failed ActionResult.

All functions run inside the caller's transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import psycopg

from center_registry import people
from center_registry.db import savepoint, with_transaction
from center_registry.errors import (
    ActionResult,
    NotFoundError,
    RegistryError,
    SelfLinkError,
    SiblingRelationshipNotFound,
)
from center_registry.models import (
    DetectionMethod,
    Person,
    RelationshipState,
    SiblingRelationship,
    can_transition,
)
from center_registry.normalize import canonical_pair

OUTCOME_CREATED = "created"
OUTCOME_REACTIVATED = "reactivated"
OUTCOME_ALREADY_LINKED = "already_linked"

SKIP_SELF = "self"


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class LinkSiblingsResult:
    added: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)

    def merge(self, other: "LinkSiblingsResult") -> None:
        self.added += other.added
        self.failed += other.failed
        self.failures.extend(other.failures)
        self.skipped.extend(other.skipped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "failed": self.failed,
            "failures": [{"siblingId": s, "error": e} for s, e in self.failures],
            "skipped": [{"siblingId": s, "reason": r} for s, r in self.skipped],
        }


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def _fetch_relationship(
    conn: psycopg.Connection,
    person1_id: str,
    person2_id: str,
    for_update: bool = False,
) -> SiblingRelationship | None:
    lock = " FOR UPDATE" if for_update else ""
    row = conn.execute(
        f"""
        SELECT id, person1_id, person2_id, state, detection_method, notes
        FROM sibling_relationship
        WHERE person1_id = %s AND person2_id = %s{lock}
        """,
        (person1_id, person2_id),
    ).fetchone()
    if row is None:
        return None
    return SiblingRelationship(
        id=str(row[0]),
        person1_id=str(row[1]),
        person2_id=str(row[2]),
        state=RelationshipState(row[3]),
        detection_method=DetectionMethod(row[4]),
        notes=row[5],
    )


def _insert_relationship(
    conn: psycopg.Connection,
    person1_id: str,
    person2_id: str,
    method: DetectionMethod,
    notes: str | None,
) -> str:
    # A concurrent insert of the same pair lands on the unique key and is
    # turned into a reactivation instead of a second row.
    row = conn.execute(
        """
        INSERT INTO sibling_relationship
          (person1_id, person2_id, detection_method, confidence, state, notes)
        VALUES (%s, %s, %s, %s, 'ACTIVE', %s)
        ON CONFLICT (person1_id, person2_id) DO UPDATE SET
          state = 'ACTIVE',
          deactivated_at = NULL,
          updated_at = now()
        RETURNING id
        """,
        (person1_id, person2_id, method.value,
         1.0 if method == DetectionMethod.MANUAL else None, notes),
    ).fetchone()
    return str(row[0])


def _set_relationship_state(
    conn: psycopg.Connection,
    relationship: SiblingRelationship,
    target: RelationshipState,
    method: DetectionMethod | None = None,
) -> None:
    if not can_transition(relationship.state, target):
        raise ValueError(
            f"sibling relationship {relationship.id}: "
            f"{relationship.state.value} -> {target.value} is not allowed"
        )
    conn.execute(
        """
        UPDATE sibling_relationship
        SET state = %s,
            detection_method = COALESCE(%s, detection_method),
            deactivated_at = CASE WHEN %s = 'INACTIVE' THEN now() ELSE NULL END,
            updated_at = now()
        WHERE id = %s
        """,
        (target.value, method.value if method else None, target.value, relationship.id),
    )
    relationship.state = target


# ---------------------------------------------------------------------------
# Single pair
# ---------------------------------------------------------------------------

def link_pair(
    conn: psycopg.Connection,
    person_id: str,
    sibling_id: str,
    method: DetectionMethod = DetectionMethod.MANUAL,
    notes: str | None = None,
) -> str:
    """Make (person_id, sibling_id) an active edge; return the outcome.

    Raises SelfLinkError for a self-link and NotFoundError when sibling_id
    has no person row.
    """
    p1, p2 = canonical_pair(person_id, sibling_id)
    if p1 == p2:
        raise SelfLinkError(person_id)
    if not people.person_exists(conn, sibling_id):
        raise NotFoundError("Person not found")

    existing = _fetch_relationship(conn, p1, p2, for_update=True)
    if existing is None:
        _insert_relationship(conn, p1, p2, method, notes)
        return OUTCOME_CREATED
    if existing.is_active:
        return OUTCOME_ALREADY_LINKED
    _set_relationship_state(conn, existing, RelationshipState.ACTIVE, method)
    return OUTCOME_REACTIVATED


# ---------------------------------------------------------------------------
# Bulk linking
# ---------------------------------------------------------------------------

def link_siblings(
    conn: psycopg.Connection,
    person_id: str,
    sibling_ids: list[str] | None,
) -> LinkSiblingsResult:
    """Link person_id to every id in sibling_ids (see module doc for counting)."""
    result = LinkSiblingsResult()
    if not sibling_ids:
        return result

    for sibling_id in sibling_ids:
        try:
            with savepoint(conn, "sibling_link"):
                outcome = link_pair(conn, person_id, sibling_id)
        except SelfLinkError:
            result.skipped.append((sibling_id, SKIP_SELF))
            continue
        except Exception as exc:
            result.failed += 1
            result.failures.append((sibling_id, str(exc) or type(exc).__name__))
            continue

        if outcome == OUTCOME_ALREADY_LINKED:
            result.skipped.append((sibling_id, OUTCOME_ALREADY_LINKED))
        else:
            result.added += 1
    return result


def link_sibling_profiles(
    conn: psycopg.Connection,
    profile_id: str,
    sibling_profile_ids: list[str] | None,
) -> LinkSiblingsResult:
    """Link siblings given program-profile ids instead of person ids.

    Unknown sibling profiles count as failures ("Profile not found").
    Raises NotFoundError when profile_id itself is unknown.
    """
    result = LinkSiblingsResult()
    if not sibling_profile_ids:
        return result

    mapping = people.resolve_profile_person_ids(conn, [profile_id, *sibling_profile_ids])
    person_id = mapping.get(profile_id)
    if person_id is None:
        raise NotFoundError(f"Profile not found: {profile_id}")

    sibling_person_ids: list[str] = []
    for sibling_profile_id in sibling_profile_ids:
        sibling_person_id = mapping.get(sibling_profile_id)
        if sibling_person_id is None:
            result.failed += 1
            result.failures.append((sibling_profile_id, "Profile not found"))
        else:
            sibling_person_ids.append(sibling_person_id)

    result.merge(link_siblings(conn, person_id, sibling_person_ids))
    return result


# ---------------------------------------------------------------------------
# Unlink / query
# ---------------------------------------------------------------------------

def unlink_siblings(conn: psycopg.Connection, person_a: str, person_b: str) -> None:
    """Soft-delete the active edge between two people.

    Raises SiblingRelationshipNotFound when no active edge exists.
    """
    p1, p2 = canonical_pair(person_a, person_b)
    existing = None
    if p1 != p2 and people.is_uuid(p1) and people.is_uuid(p2):
        existing = _fetch_relationship(conn, p1, p2, for_update=True)
    if existing is None or not existing.is_active:
        raise SiblingRelationshipNotFound(person_a, person_b)
    _set_relationship_state(conn, existing, RelationshipState.INACTIVE)


def are_siblings(conn: psycopg.Connection, person_a: str, person_b: str) -> bool:
    p1, p2 = canonical_pair(person_a, person_b)
    if p1 == p2 or not (people.is_uuid(p1) and people.is_uuid(p2)):
        return False
    existing = _fetch_relationship(conn, p1, p2)
    return existing is not None and existing.is_active


def get_sibling_ids(conn: psycopg.Connection, person_id: str) -> list[str]:
    if not people.is_uuid(person_id):
        return []
    rows = conn.execute(
        """
        SELECT CASE WHEN person1_id = %s THEN person2_id ELSE person1_id END
        FROM sibling_relationship
        WHERE (person1_id = %s OR person2_id = %s)
          AND state = 'ACTIVE'
        ORDER BY created_at ASC
        """,
        (person_id, person_id, person_id),
    ).fetchall()
    return [str(r[0]) for r in rows]


def get_siblings(conn: psycopg.Connection, person_id: str) -> list[Person]:
    """Active siblings of a person with their contacts and profiles."""
    siblings: list[Person] = []
    for sibling_id in get_sibling_ids(conn, person_id):
        person = people.fetch_person(conn, sibling_id)
        if person is not None:
            siblings.append(person)
    return siblings


# ---------------------------------------------------------------------------
# Admin actions
# ---------------------------------------------------------------------------

def add_sibling(conn: psycopg.Connection, person_id: str, sibling_id: str) -> ActionResult:
    """Link one pair in its own transaction and report it as an ActionResult."""

    def _apply(c: psycopg.Connection) -> str:
        if not people.person_exists(c, person_id):
            raise NotFoundError("Person not found")
        return link_pair(c, person_id, sibling_id)

    try:
        outcome = with_transaction(conn, _apply)
    except RegistryError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.ok(outcome=outcome)


def remove_sibling(conn: psycopg.Connection, person_id: str, sibling_id: str) -> ActionResult:
    """Unlink one pair in its own transaction and report it as an ActionResult."""
    try:
        with_transaction(conn, lambda c: unlink_siblings(c, person_id, sibling_id))
    except RegistryError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.ok()
