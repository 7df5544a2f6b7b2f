"""schedule_etl.import_rules

YAML-configurable import rules: field alias sets and preferred sheet names.

Responsibilities:
  - Provide the built-in alias sets used when no rule file is given
  - Load and validate YAML rule files (e.g. config/import_rules.yml)
  - Hash YAML content for traceability in run reports

Usage:
    from pathlib import Path
    from schedule_etl.import_rules import load_import_rules

    rules = load_import_rules(Path("config/import_rules.yml"))
    rules.alias_set("store_number").aliases
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from schedule_etl.header_map import FieldAliasSet

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_VERSION = "builtin-v1"

DEFAULT_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "employee_name": ("employee name", "employee", "name"),
    "first_name": ("first name",),
    "last_name": ("last name",),
    "employee_id": ("employee id",),
    "store_number": (
        "store number", "store", "site", "location number", "site number",
        "scheduled site",
    ),
    "date": ("date", "shift date", "work date", "scheduled date"),
    "shift_start": ("shift start", "start time", "start"),
    "shift_end": ("shift end", "end time", "end"),
    "notes": ("notes", "comment", "remarks"),
    "region": ("region",),
    "role": ("role",),
    "employee_type": ("employee type",),
    "scheduled_hours": ("scheduled hours",),
    "published": ("published",),
}

DEFAULT_PREFERRED_SHEETS: tuple[str, ...] = (
    "shift detail",
    "shift details",
    "employee shifts by site",
)

VALID_FIELDS = frozenset(DEFAULT_FIELD_ALIASES)

REQUIRED_YAML_KEYS = frozenset({"version", "fields"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ImportRulesValidationError(ValueError):
    """Raised when an import rule file fails schema validation."""


# ---------------------------------------------------------------------------
# ImportRules dataclass
# ---------------------------------------------------------------------------

@dataclass
class ImportRules:
    """Alias sets and sheet preferences for one import run."""

    version: str
    field_aliases: dict[str, FieldAliasSet]
    preferred_sheets: tuple[str, ...] = DEFAULT_PREFERRED_SHEETS
    yaml_hash: str | None = None
    raw_yaml: str = field(repr=False, default="")

    def alias_set(self, name: str) -> FieldAliasSet:
        try:
            return self.field_aliases[name]
        except KeyError:
            raise KeyError(f"No alias set for field {name!r}") from None


def _alias_sets(aliases: dict[str, tuple[str, ...]]) -> dict[str, FieldAliasSet]:
    return {name: FieldAliasSet(name, tuple(values)) for name, values in aliases.items()}


def default_import_rules() -> ImportRules:
    """Return the built-in rules."""
    return ImportRules(
        version=DEFAULT_VERSION,
        field_aliases=_alias_sets(DEFAULT_FIELD_ALIASES),
    )


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def _clean_aliases(values: list[Any]) -> tuple[str, ...]:
    return tuple(v.strip().lower() for v in values)


def load_import_rules(yaml_path: Path) -> ImportRules:
    """Load, validate, and return ImportRules from a YAML file.

    Fields absent from the file keep their built-in aliases.

    Raises:
        ImportRulesValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_import_rules(data)

    aliases = dict(DEFAULT_FIELD_ALIASES)
    for name, values in data["fields"].items():
        aliases[name] = _clean_aliases(values)

    preferred = data.get("preferred_sheets")
    return ImportRules(
        version=str(data["version"]),
        field_aliases=_alias_sets(aliases),
        preferred_sheets=(
            _clean_aliases(preferred) if preferred is not None else DEFAULT_PREFERRED_SHEETS
        ),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        raw_yaml=raw,
    )


def _validate_string_list(label: str, values: Any) -> None:
    if not isinstance(values, list) or not values:
        raise ImportRulesValidationError(f"{label} must be a non-empty list.")
    for v in values:
        if not isinstance(v, str) or not v.strip():
            raise ImportRulesValidationError(
                f"{label} contains an empty or non-string entry: {v!r}"
            )


def validate_import_rules(data: Any) -> None:
    """Raise ImportRulesValidationError if data does not match the rule schema.

    Validates:
      - Required top-level keys present
      - every field name is a known canonical field
      - alias lists are non-empty lists of non-empty strings
      - preferred_sheets, when given, is a non-empty list of strings
    """
    if not isinstance(data, dict):
        raise ImportRulesValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise ImportRulesValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    fields = data.get("fields")
    if not isinstance(fields, dict) or not fields:
        raise ImportRulesValidationError("'fields' must be a non-empty mapping.")

    unknown = set(fields) - VALID_FIELDS
    if unknown:
        raise ImportRulesValidationError(
            f"Unknown field(s) {sorted(unknown)}. Must be among {sorted(VALID_FIELDS)}."
        )

    for name, values in fields.items():
        _validate_string_list(f"fields.{name}", values)

    if data.get("preferred_sheets") is not None:
        _validate_string_list("preferred_sheets", data["preferred_sheets"])
