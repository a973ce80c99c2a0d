"""Target-field catalogue and caller-confirmed column mappings."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import yaml
from flask import current_app

from casebook.importer.adapters.rows import Row
from casebook.importer.errors import MappingIncompleteError, ValidationError

from .transforms import apply_transform, is_known_transform

FIRST_NAME = "client.firstName"
LAST_NAME = "client.lastName"
FULL_NAME = "client.fullName"
PHONE = "client.phone"
EMAIL = "client.email"

FIELD_TYPES = frozenset({"string", "phone", "email", "date", "zip"})


class MappingLoadError(RuntimeError):
    """Raised when the target-field catalogue cannot be loaded or validated."""


@dataclass(frozen=True)
class TargetField:
    path: str
    label: str
    type: str = "string"
    required: bool = False
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldCatalogue:
    version: int
    entity: str
    fields: Sequence[TargetField]
    ambiguous_columns: frozenset[str]
    checksum: str
    path: Path

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(target.path for target in self.fields)

    def get(self, path: str) -> TargetField | None:
        for target in self.fields:
            if target.path == path:
                return target
        return None


def load_field_catalogue(path: str | Path) -> FieldCatalogue:
    """
    Load and validate a YAML target-field catalogue.
    """

    path = Path(path)
    if not path.exists():
        raise MappingLoadError(f"Field catalogue not found at {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise MappingLoadError(f"Failed to parse field catalogue YAML at {path}: {exc}") from exc

    try:
        version = int(raw["version"])
        entity = str(raw.get("entity", "")).strip() or "client"
        fields_payload = raw["fields"]
    except KeyError as exc:
        raise MappingLoadError(f"Missing required catalogue attribute: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise MappingLoadError(f"Invalid catalogue attribute: {exc}") from exc

    fields: list[TargetField] = []
    seen: set[str] = set()
    for entry in fields_payload or ():
        if not isinstance(entry, Mapping):
            raise MappingLoadError(f"Field definition must be a mapping, got {entry!r}")
        target_path = str(entry.get("path") or "").strip()
        if not target_path:
            raise MappingLoadError(f"Field entry missing 'path': {entry!r}")
        if target_path in seen:
            raise MappingLoadError(f"Duplicate field '{target_path}' in catalogue.")
        seen.add(target_path)
        field_type = str(entry.get("type", "string")).strip().lower()
        if field_type not in FIELD_TYPES:
            raise MappingLoadError(f"Field '{target_path}' has unknown type '{field_type}'.")
        fields.append(
            TargetField(
                path=target_path,
                label=str(entry.get("label") or target_path),
                type=field_type,
                required=bool(entry.get("required", False)),
                aliases=tuple(str(alias).strip().lower() for alias in entry.get("aliases") or ()),
            )
        )

    for required_path in (FIRST_NAME, LAST_NAME, PHONE, EMAIL):
        if required_path not in seen:
            raise MappingLoadError(f"Catalogue must define '{required_path}'.")

    ambiguous = frozenset(str(token).strip().lower() for token in raw.get("ambiguous_columns") or ())
    return FieldCatalogue(
        version=version,
        entity=entity,
        fields=tuple(fields),
        ambiguous_columns=ambiguous,
        checksum=_compute_checksum(raw),
        path=path,
    )


def get_field_catalogue() -> FieldCatalogue:
    """
    Load the configured catalogue (cached on the app, reloaded when the file changes).
    """

    config_path = current_app.config.get("IMPORTER_CLIENT_FIELDS_PATH")
    if not config_path:
        raise MappingLoadError("IMPORTER_CLIENT_FIELDS_PATH is not configured.")
    config_path = Path(config_path)
    if not config_path.exists():
        raise MappingLoadError(f"Field catalogue not found at {config_path}")

    cache: dict[str, tuple[FieldCatalogue, float]] = current_app.extensions.setdefault(
        "_importer_field_catalogue_cache", {}
    )
    current_mtime = config_path.stat().st_mtime
    cached = cache.get(str(config_path))
    if cached and cached[1] == current_mtime:
        return cached[0]
    if cached:
        current_app.logger.debug("Field catalogue changed, reloading: %s", config_path)
    catalogue = load_field_catalogue(config_path)
    cache[str(config_path)] = (catalogue, current_mtime)
    return catalogue


def _compute_checksum(payload: Mapping[str, Any]) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


# Confirmed mappings ----------------------------------------------------------


@dataclass(frozen=True)
class FieldMapping:
    source_column: str
    target_field: str
    transform: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column": self.source_column,
            "target_field": self.target_field,
            "transform": self.transform,
        }


def _pick(entry: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry and entry[key] not in (None, ""):
            return entry[key]
    return None


def coerce_mappings(
    payload: Any,
    catalogue: FieldCatalogue,
    *,
    columns: Sequence[str] | None = None,
) -> tuple[FieldMapping, ...]:
    """
    Build ``FieldMapping`` objects from request JSON.

    Accepts a list of ``{source_column, target_field, transform}`` objects
    (camelCase keys too) or a ``{column: target}`` object. Entries with an
    empty target are treated as "do not import" and dropped.
    """

    if payload is None:
        return ()
    if isinstance(payload, Mapping):
        entries: Iterable[Any] = (
            {"source_column": column, "target_field": target} for column, target in payload.items()
        )
    elif isinstance(payload, (list, tuple)):
        entries = payload
    else:
        raise ValidationError("mappings must be a list of objects.", field="mappings")

    known_columns = set(columns) if columns is not None else None
    mappings: list[FieldMapping] = []
    targets: set[str] = set()
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise ValidationError(f"Mapping entry must be an object, got {entry!r}.", field="mappings")
        source = _pick(entry, "source_column", "sourceColumn", "source")
        target = _pick(entry, "target_field", "targetField", "target")
        transform = _pick(entry, "transform", "transformer")
        if not target:
            continue
        if not source:
            raise ValidationError(f"Mapping for '{target}' has no source column.", field="mappings")
        source = str(source)
        target = str(target).strip()
        if catalogue.get(target) is None:
            raise ValidationError(f"Unknown target field '{target}'.", field=target)
        if known_columns is not None and source not in known_columns:
            raise ValidationError(f"Column '{source}' does not exist in this batch.", field=target)
        if target in targets:
            raise ValidationError(f"Target field '{target}' is mapped more than once.", field=target)
        if transform is not None:
            transform = str(transform).strip()
            if not is_known_transform(transform):
                raise ValidationError(f"Unknown transform '{transform}'.", field=target)
        targets.add(target)
        mappings.append(FieldMapping(source_column=source, target_field=target, transform=transform))
    return tuple(mappings)


def missing_required_fields(mappings: Iterable[FieldMapping]) -> list[str]:
    targets = {mapping.target_field for mapping in mappings}
    missing: list[str] = []
    if FULL_NAME not in targets:
        missing.extend(path for path in (FIRST_NAME, LAST_NAME) if path not in targets)
    if PHONE not in targets and EMAIL not in targets:
        missing.append(PHONE)
    return missing


def ensure_minimum_mapping(mappings: Iterable[FieldMapping]) -> None:
    missing = missing_required_fields(mappings)
    if missing:
        raise MappingIncompleteError(missing)


def split_full_name(value: str) -> tuple[str | None, str | None]:
    """Split on the last whitespace; ``Last, First`` is honoured."""

    text = " ".join(value.split())
    if not text:
        return None, None
    if "," in text:
        last, _, first = text.partition(",")
        return (first.strip() or None), (last.strip() or None)
    if " " not in text:
        return text, None
    first, _, last = text.rpartition(" ")
    return first, last


@dataclass
class MappedRow:
    values: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def apply_mapping(row: Row, mappings: Iterable[FieldMapping]) -> MappedRow:
    """Project a typed row onto target paths, running transforms."""

    result = MappedRow()
    for mapping in mappings:
        cell = row.get(mapping.source_column)
        try:
            value = apply_transform(cell, mapping.transform)
        except ValueError as exc:
            result.errors.append(f"{mapping.target_field}: {exc}")
            continue
        if isinstance(value, str):
            value = value.strip() or None
        result.values[mapping.target_field] = value

    full_name = result.values.get(FULL_NAME)
    if full_name:
        first, last = split_full_name(str(full_name))
        if not result.values.get(FIRST_NAME):
            result.values[FIRST_NAME] = first
        if not result.values.get(LAST_NAME):
            result.values[LAST_NAME] = last
    return result


__all__ = [
    "EMAIL",
    "FIRST_NAME",
    "FULL_NAME",
    "FieldCatalogue",
    "FieldMapping",
    "LAST_NAME",
    "MappedRow",
    "MappingLoadError",
    "PHONE",
    "TargetField",
    "apply_mapping",
    "coerce_mappings",
    "ensure_minimum_mapping",
    "get_field_catalogue",
    "load_field_catalogue",
    "missing_required_fields",
    "split_full_name",
]
