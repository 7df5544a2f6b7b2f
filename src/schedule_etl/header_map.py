"""schedule_etl.header_map

Header resolution and alias-ordered field extraction.

A source header row is resolved once per import into a HeaderIndex
(normalized header text → zero-based column).  Each canonical field carries an
ordered list of header synonyms; extraction walks that list as explicit
priority rules and returns the first non-empty cell.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from schedule_etl.normalize import cell_text

HeaderIndex = Mapping[str, int]


# ---------------------------------------------------------------------------
# Alias rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AliasRule:
    """One header synonym for a canonical field; lower priority wins."""

    field: str
    alias: str
    priority: int


@dataclass(frozen=True)
class FieldAliasSet:
    """A canonical field and its header synonyms in precedence order."""

    field: str
    aliases: tuple[str, ...]

    def rules(self) -> list[AliasRule]:
        return [
            AliasRule(self.field, alias, priority)
            for priority, alias in enumerate(self.aliases)
        ]


def normalize_header(value: Any) -> str | None:
    """Header key form: trimmed, lower-cased.  Non-string headers → None."""
    if not isinstance(value, str):
        return None
    v = value.strip().lower()
    return v if v else None


# ---------------------------------------------------------------------------
# Header Resolver
# ---------------------------------------------------------------------------

def build_header_index(header_row: Sequence[Any]) -> dict[str, int]:
    """Map each string header to its column position.

    Non-string and blank headers are left out.  A repeated header resolves to
    its last column.
    """
    index: dict[str, int] = {}
    for position, header in enumerate(header_row):
        key = normalize_header(header)
        if key is None:
            continue
        index[key] = position
    return index


def resolve_columns(
    header_index: HeaderIndex,
    alias_set: FieldAliasSet,
) -> list[tuple[AliasRule, int]]:
    """Return (rule, column) for every alias present in the header, by priority."""
    matched = [
        (rule, header_index[rule.alias])
        for rule in alias_set.rules()
        if rule.alias in header_index
    ]
    return sorted(matched, key=lambda pair: pair[0].priority)


# ---------------------------------------------------------------------------
# Field Extractor
# ---------------------------------------------------------------------------

def pick_cell(
    row: Sequence[Any],
    header_index: HeaderIndex,
    alias_set: FieldAliasSet,
) -> Any | None:
    """Return the raw cell of the first alias whose trimmed text is non-empty.

    The raw value is kept so native dates survive for the date normalizer.
    Short rows are treated as blank in the missing columns.
    """
    for _rule, column in resolve_columns(header_index, alias_set):
        if column >= len(row):
            continue
        cell = row[column]
        if cell_text(cell) is not None:
            return cell
    return None


def pick_value(
    row: Sequence[Any],
    header_index: HeaderIndex,
    alias_set: FieldAliasSet,
) -> str | None:
    """Return the first non-empty value across the field's aliases, as trimmed text."""
    return cell_text(pick_cell(row, header_index, alias_set))
