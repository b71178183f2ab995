"""Normalization functions shared by duplicate detection, sibling linking
and registration.

All value functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
import unicodedata
import uuid
from datetime import date, datetime

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 11

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_email
# ---------------------------------------------------------------------------

def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address.

    Values that are not shaped like ``local@domain`` normalize to None so
    they never match a stored contact point.
    """
    v = trim(value)
    if v is None:
        return None
    v = v.lower()
    if not _EMAIL_RE.match(v):
        return None
    return v


# ---------------------------------------------------------------------------
# Rule 4: normalize_phone
# ---------------------------------------------------------------------------

def normalize_phone(value: str | None) -> str | None:
    """Return the digit sequence of a phone number, or None.

    Formatting punctuation is dropped ("(612) 555-1234" -> "6125551234").
    Only 10-digit national numbers and 11-digit numbers with a country
    prefix are accepted; anything else returns None.
    """
    v = trim(value)
    if v is None:
        return None
    digits = re.sub(r"\D", "", v)
    if PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
        return digits
    return None


# ---------------------------------------------------------------------------
# Rule 5: normalize_name  (for sibling name matching)
# ---------------------------------------------------------------------------

def normalize_name(value: str | None) -> str | None:
    """Lowercase, fold accents, remove punctuation except spaces, collapse spaces."""
    v = trim(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^\w\s]", "", v)
    v = re.sub(r"\s+", " ", v).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def _capitalize_word(word: str) -> str:
    # Hyphenated parts are capitalized individually: "al-amin" -> "Al-Amin"
    return "-".join(p[:1].upper() + p[1:].lower() for p in word.split("-"))


def format_full_name(first_name: str | None, last_name: str | None) -> str:
    """Join and capitalize name parts: (" ahmed ", "hassan") -> "Ahmed Hassan"."""
    parts = [normalize_space(first_name), normalize_space(last_name)]
    words: list[str] = []
    for part in parts:
        if part:
            words.extend(_capitalize_word(w) for w in part.split(" "))
    return " ".join(words)


def last_name_of(full_name: str | None) -> str | None:
    """Return the final whitespace-separated token of a name, or None."""
    v = normalize_space(full_name)
    if not v:
        return None
    tokens = v.split(" ")
    if len(tokens) < 2:
        return None
    return tokens[-1]


def format_display_date(value: date | datetime | None) -> str | None:
    """Format a registration date as 'Jan 5, 2025'."""
    if value is None:
        return None
    return f"{value:%b} {value.day}, {value.year}"


def parse_iso_date(value: str | None) -> date | None:
    """Parse 'YYYY-MM-DD' (or 'MM/DD/YYYY'), returning None on failure."""
    v = trim(value)
    if v is None:
        return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


def split_id_list(value: str | None) -> list[str]:
    """Split a ';' or ',' separated identifier list, dropping blanks."""
    v = trim(value)
    if v is None:
        return []
    return [t.strip() for t in re.split(r"[;,]", v) if t.strip()]


# ---------------------------------------------------------------------------
# Canonical pair ordering
# ---------------------------------------------------------------------------

def canonical_pair(first_id: str, second_id: str) -> tuple[str, str]:
    """Return the two identifiers in the database's uuid order.

    Any spelling uuid.UUID accepts, hyphenless or braced in either case, is
    rewritten to the lowercase hyphenated form, and the pair is sorted by
    uuid value so it satisfies the person1_id < person2_id check. Ids that
    do not parse as UUIDs fall back to lowercase text order.
    """
    try:
        a, b = sorted(uuid.UUID(str(x)) for x in (first_id, second_id))
    except ValueError:
        a, b = sorted(str(x).lower() for x in (first_id, second_id))
    return str(a), str(b)
