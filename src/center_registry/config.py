"""center_registry.config

YAML-backed registration settings.

The configuration is loaded once at startup (cli.main) and passed explicitly
to register_student; business logic never reads the process environment.

Usage:
    from pathlib import Path
    from center_registry.config import load_config

    config = load_config(Path("config/registration.yml"))
    result = register_student(conn, payload, config)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from center_registry.models import EnrollmentStatus, Program

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_YAML_KEYS = frozenset({
    "enabled_programs",
    "require_email",
    "require_phone",
    "max_siblings_per_registration",
})

DEFAULT_CONFIG_PATH = Path("config/registration.yml")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a registration config file fails schema validation."""


# ---------------------------------------------------------------------------
# RegistrationConfig dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegistrationConfig:
    """Parsed, validated registration settings."""

    enabled_programs: frozenset[Program] = frozenset({Program.MAHAD, Program.DUGSI})
    require_email: bool = True
    require_phone: bool = True
    max_siblings_per_registration: int = 15
    default_status: EnrollmentStatus = EnrollmentStatus.REGISTERED
    yaml_hash: str | None = field(default=None, compare=False)

    def is_open(self, program: Program) -> bool:
        return program in self.enabled_programs


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_config(yaml_path: Path) -> RegistrationConfig:
    """Load, validate, and return a RegistrationConfig from a YAML file.

    Raises:
        ConfigValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_config(data)
    return RegistrationConfig(
        enabled_programs=frozenset(Program(p) for p in data["enabled_programs"]),
        require_email=bool(data["require_email"]),
        require_phone=bool(data["require_phone"]),
        max_siblings_per_registration=int(data["max_siblings_per_registration"]),
        default_status=EnrollmentStatus(data.get("default_status") or "REGISTERED"),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
    )


def validate_config(data: dict[str, Any]) -> None:
    """Raise ConfigValidationError if data does not match the required schema."""
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise ConfigValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    programs = data.get("enabled_programs")
    if not isinstance(programs, list):
        raise ConfigValidationError("'enabled_programs' must be a list.")
    valid_programs = {p.value for p in Program}
    for program in programs:
        if program not in valid_programs:
            raise ConfigValidationError(
                f"Invalid program '{program}'. Must be one of {sorted(valid_programs)}."
            )

    for key in ("require_email", "require_phone"):
        if not isinstance(data.get(key), bool):
            raise ConfigValidationError(f"'{key}' must be true or false.")

    max_siblings = data.get("max_siblings_per_registration")
    if isinstance(max_siblings, bool) or not isinstance(max_siblings, int) or max_siblings < 0:
        raise ConfigValidationError(
            f"'max_siblings_per_registration' value '{max_siblings}' must be a non-negative integer."
        )

    status = data.get("default_status")
    if status is not None:
        valid_statuses = {s.value for s in EnrollmentStatus} - {EnrollmentStatus.WITHDRAWN.value}
        if status not in valid_statuses:
            raise ConfigValidationError(
                f"Invalid default_status '{status}'. Must be one of {sorted(valid_statuses)}."
            )
