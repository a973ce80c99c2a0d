"""
Row validation: turn mapped target-path values into clean ``Client`` attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping, Sequence

from email_validator import EmailNotValidError, validate_email

from casebook.importer.adapters.rows import Row
from casebook.importer.mapping import EMAIL, FIRST_NAME, LAST_NAME, PHONE, FieldMapping, apply_mapping
from casebook.importer.mapping.transforms import parse_date

from .deterministic import normalize_email, normalize_phone

# Target path -> Client attribute.
TARGET_ATTRIBUTES: dict[str, str] = {
    FIRST_NAME: "first_name",
    LAST_NAME: "last_name",
    PHONE: "phone",
    EMAIL: "email",
    "client.internalId": "internal_id",
    "client.dateOfBirth": "date_of_birth",
    "client.address.street": "street",
    "client.address.city": "city",
    "client.address.state": "state",
    "client.address.zip": "zip_code",
}

_MAX_LENGTHS = {
    "first_name": 100,
    "last_name": 100,
    "phone": 40,
    "email": 255,
    "internal_id": 100,
    "street": 255,
    "city": 100,
    "state": 50,
    "zip_code": 20,
}


@dataclass
class RowValidation:
    values: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def mapped_json(self) -> dict[str, Any]:
        return {key: value.isoformat() if isinstance(value, date) else value for key, value in self.values.items()}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_row(
    mapped: Mapping[str, Any],
    *,
    default_region: str = "1",
    prior_errors: list[str] | None = None,
) -> RowValidation:
    """
    Check required-field presence and coerce typed values.

    ``values`` keeps the coerced attributes even when errors are reported, so
    previews can show what was understood.
    """

    result = RowValidation(errors=list(prior_errors or ()))
    for path, attribute in TARGET_ATTRIBUTES.items():
        if path in mapped:
            result.values[attribute] = _text(mapped[path])

    for attribute, path in (("first_name", FIRST_NAME), ("last_name", LAST_NAME)):
        if not result.values.get(attribute):
            result.errors.append(f"{path} is required")

    phone = result.values.get("phone")
    email = result.values.get("email")
    if not phone and not email:
        result.errors.append(f"{PHONE} or {EMAIL} is required")

    if phone:
        normalized = normalize_phone(phone, default_region)
        if normalized is None:
            result.errors.append(f"{PHONE}: '{phone}' is not a valid phone number")
        result.values["phone_normalized"] = normalized

    if email:
        try:
            validated = validate_email(email, check_deliverability=False)
        except EmailNotValidError as exc:
            result.errors.append(f"{EMAIL}: '{email}' is not a valid email address ({exc})")
            result.values["email_normalized"] = None
        else:
            result.values["email"] = validated.normalized
            result.values["email_normalized"] = normalize_email(validated.normalized)

    dob = mapped.get("client.dateOfBirth")
    if dob not in (None, ""):
        try:
            result.values["date_of_birth"] = dob if isinstance(dob, date) else parse_date(str(dob))
        except ValueError as exc:
            result.errors.append(f"client.dateOfBirth: {exc}")
            result.values["date_of_birth"] = None

    for attribute, limit in _MAX_LENGTHS.items():
        value = result.values.get(attribute)
        if isinstance(value, str) and len(value) > limit:
            result.errors.append(f"{attribute} exceeds {limit} characters")
    return result


def prepare_row(row: Row, mappings: Sequence[FieldMapping], *, default_region: str = "1") -> RowValidation:
    """Map a typed source row and validate the result."""

    mapped = apply_mapping(row, mappings)
    return validate_row(mapped.values, default_region=default_region, prior_errors=mapped.errors)
