"""
Advisory column -> target-field suggestions.

Column names are tokenized case- and punctuation-insensitively and compared
with catalogue aliases; a sample of values is sniffed for shape (phone, email,
date) to raise confidence and to resolve ambiguously named columns. Never
raises: columns without a plausible target are omitted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from rapidfuzz import fuzz

from casebook.importer.adapters.rows import Row
from casebook.importer.mapping import FieldCatalogue, TargetField

EXACT_ALIAS_CONFIDENCE = 0.9
FUZZY_ALIAS_CONFIDENCE = 0.6
SHAPE_BONUS = 0.2
SHAPE_ONLY_CONFIDENCE = 0.5
FUZZY_ALIAS_CUTOFF = 85
SAMPLE_VALUES = 5

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE = re.compile(r"^[\d\s\-().+]{10,}$")
_SSN = re.compile(r"^\d{3}-?\d{2}-?\d{4}$")
_ZIP = re.compile(r"^\d{5}(-\d{4})?$")
_DATES = (
    re.compile(r"^\d{4}-\d{1,2}-\d{1,2}$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"),
    re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"),
)
_BOOLEANS = {"true", "false", "yes", "no", "y", "n", "1", "0"}

# Shapes that identify a target field type on their own.
_SHAPE_FOR_TYPE = {"phone": "phone", "email": "email", "date": "date", "zip": "zip"}


def normalize_token(value: str) -> str:
    return _TOKEN_SPLIT.sub("_", value.strip().lower()).strip("_")


def _is_number(text: str) -> bool:
    try:
        float(text.replace(",", ""))
    except ValueError:
        return False
    return True


def infer_type(values: Sequence[str]) -> str:
    """Classify a column from its non-empty text values."""

    if not values:
        return "string"
    if all(_EMAIL.match(value) for value in values):
        return "email"
    if all(_PHONE.match(value) and sum(char.isdigit() for char in value) >= 10 for value in values):
        return "phone"
    if all(_SSN.match(value) for value in values):
        return "ssn"
    if all(value.lower() in _BOOLEANS for value in values):
        return "boolean"
    if all(any(pattern.match(value) for pattern in _DATES) for value in values):
        return "date"
    if all(_is_number(value) for value in values):
        return "number"
    return "string"


@dataclass(frozen=True)
class ColumnAnalysis:
    column: str
    inferred_type: str
    sample_values: tuple[str, ...]
    unique_count: int
    null_count: int
    zip_like: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "column": self.column,
            "inferred_type": self.inferred_type,
            "sample_values": list(self.sample_values),
            "unique_count": self.unique_count,
            "null_count": self.null_count,
        }


def analyze_columns(columns: Sequence[str], rows: Iterable[Row], sample_size: int = 20) -> dict[str, ColumnAnalysis]:
    sample = [row for _, row in zip(range(max(sample_size, 0)), rows)]
    analysis: dict[str, ColumnAnalysis] = {}
    for column in columns:
        values = [text for text in (row.text(column) for row in sample) if text]
        analysis[column] = ColumnAnalysis(
            column=column,
            inferred_type=infer_type(values),
            sample_values=tuple(values[:SAMPLE_VALUES]),
            unique_count=len(set(values)),
            null_count=len(sample) - len(values),
            zip_like=bool(values) and all(_ZIP.match(value) for value in values),
        )
    return analysis


@dataclass(frozen=True)
class MappingSuggestion:
    source_column: str
    target_field: str
    confidence: float
    reason: str
    sample_values: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column": self.source_column,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "reason": self.reason,
            "sample_values": list(self.sample_values),
        }


def _shape_matches(target: TargetField, analysis: ColumnAnalysis) -> bool:
    shape = _SHAPE_FOR_TYPE.get(target.type)
    if shape is None:
        return False
    if shape == "zip":
        return analysis.zip_like
    return analysis.inferred_type == shape


def _name_score(token: str, target: TargetField) -> tuple[float, str] | None:
    names = set(target.aliases)
    names.add(normalize_token(target.label))
    names.add(normalize_token(target.path.split(".")[-1]))
    if token in names:
        return EXACT_ALIAS_CONFIDENCE, f"column name matches '{token}'"
    best_alias, best_ratio = None, 0.0
    for alias in sorted(names):
        ratio = fuzz.ratio(token, alias)
        if ratio > best_ratio:
            best_alias, best_ratio = alias, ratio
    if best_ratio >= FUZZY_ALIAS_CUTOFF:
        return FUZZY_ALIAS_CONFIDENCE, f"column name resembles '{best_alias}'"
    return None


def suggest_mappings(
    columns: Sequence[str],
    rows: Iterable[Row],
    catalogue: FieldCatalogue,
    *,
    sample_size: int = 20,
) -> list[MappingSuggestion]:
    """Assign each target field to at most one column, best confidence first."""

    analysis = analyze_columns(columns, rows, sample_size)
    candidates: list[tuple[float, int, str, TargetField, str]] = []
    for position, column in enumerate(columns):
        token = normalize_token(column)
        if not token:
            continue
        column_analysis = analysis[column]
        if token in catalogue.ambiguous_columns:
            for target in catalogue.fields:
                if _shape_matches(target, column_analysis):
                    reason = f"values look like {column_analysis.inferred_type if target.type != 'zip' else 'zip codes'}"
                    candidates.append((SHAPE_ONLY_CONFIDENCE, position, column, target, reason))
            continue
        for target in catalogue.fields:
            scored = _name_score(token, target)
            if scored is None:
                continue
            confidence, reason = scored
            if _shape_matches(target, column_analysis):
                confidence += SHAPE_BONUS
                reason += " and values match the field type"
            candidates.append((round(min(confidence, 1.0), 2), position, column, target, reason))

    candidates.sort(key=lambda item: (-item[0], item[1]))
    used_columns: set[str] = set()
    used_targets: set[str] = set()
    suggestions: list[MappingSuggestion] = []
    for confidence, _, column, target, reason in candidates:
        if column in used_columns or target.path in used_targets:
            continue
        used_columns.add(column)
        used_targets.add(target.path)
        suggestions.append(
            MappingSuggestion(
                source_column=column,
                target_field=target.path,
                confidence=confidence,
                reason=reason,
                sample_values=analysis[column].sample_values,
            )
        )
    order = {column: position for position, column in enumerate(columns)}
    suggestions.sort(key=lambda suggestion: order[suggestion.source_column])
    return suggestions
