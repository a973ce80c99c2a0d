"""
Deterministic email/phone normalization and exact-match lookup for dedupe.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:  # pragma: no cover
    from .snapshot import ClientSnapshot

_E164_REGEX = re.compile(r"^\+[1-9]\d{7,14}$")
_EXTENSION_REGEX = re.compile(r"\s*(x|ext|extension|#)\s*\d+.*$", re.IGNORECASE)


def normalize_email(value: object | None) -> str | None:
    """
    Normalize email for deterministic matching.

    - Lower-case entire address
    - Trim whitespace
    - Drop plus-addressing suffix (everything after '+') in the local part
    """

    if value is None:
        return None
    token = str(value).strip()
    if not token:
        return None
    token = token.lower()
    if "@" not in token:
        return token
    local_part, domain = token.split("@", 1)
    if "+" in local_part:
        local_part = local_part.split("+", 1)[0]
    return f"{local_part}@{domain}"


def normalize_phone(value: object | None, default_region: str = "1") -> str | None:
    """
    Normalize phone numbers to strict E.164 (+<country><number>) format.

    Ten-digit numbers get ``default_region`` as their country code; numbers
    already carrying that code (or a leading ``+``/``00``) are kept. Extensions
    are stripped. Returns None when the value cannot be normalized.
    """

    if value is None:
        return None
    token = _EXTENSION_REGEX.sub("", str(value).strip()).strip()
    if not token:
        return None

    if token.startswith("00"):
        token = f"+{token[2:]}"
    digits_only = "".join(char for char in token if char.isdigit())
    region = "".join(char for char in str(default_region) if char.isdigit()) or "1"

    if token.startswith("+"):
        normalized = f"+{digits_only}"
    elif len(digits_only) == 10:
        normalized = f"+{region}{digits_only}"
    elif len(digits_only) == 10 + len(region) and digits_only.startswith(region):
        normalized = f"+{digits_only}"
    else:
        return None

    if _E164_REGEX.match(normalized):
        return normalized
    return None


def email_local_part(normalized_email: str | None) -> str | None:
    if not normalized_email or "@" not in normalized_email:
        return None
    return normalized_email.split("@", 1)[0] or None


def phone_tail(normalized_phone: str | None, length: int = 7) -> str | None:
    if not normalized_phone:
        return None
    digits = normalized_phone.lstrip("+")
    return digits[-length:] if len(digits) >= length else None


@dataclass(frozen=True)
class DeterministicMatchResult:
    """
    Outcome from running deterministic email/phone matching.

    Attributes:
        outcome: 'combined', 'email', 'phone', 'none' or 'insufficient' when
            the row carries no identifier.
        email_match_ids: Client keys that matched by email.
        phone_match_ids: Client keys that matched by phone.
    """

    outcome: Literal["combined", "email", "phone", "none", "insufficient"]
    email_match_ids: tuple[str, ...]
    phone_match_ids: tuple[str, ...]
    normalized_email: str | None
    normalized_phone: str | None

    @property
    def is_match(self) -> bool:
        return self.outcome in {"combined", "email", "phone"}

    @property
    def matched_keys(self) -> tuple[str, ...]:
        ordered = dict.fromkeys(self.phone_match_ids + self.email_match_ids)
        return tuple(ordered)


def match_exact(
    snapshot: "ClientSnapshot",
    *,
    normalized_phone: str | None,
    normalized_email: str | None,
) -> DeterministicMatchResult:
    """Look up active clients sharing the row's normalized phone or email."""

    if not normalized_phone and not normalized_email:
        return DeterministicMatchResult("insufficient", (), (), normalized_email, normalized_phone)

    phone_ids = tuple(candidate.key for candidate in snapshot.by_phone(normalized_phone))
    email_ids = tuple(candidate.key for candidate in snapshot.by_email(normalized_email))

    if phone_ids and email_ids:
        outcome: Literal["combined", "email", "phone", "none", "insufficient"] = "combined"
    elif phone_ids:
        outcome = "phone"
    elif email_ids:
        outcome = "email"
    else:
        outcome = "none"
    return DeterministicMatchResult(outcome, email_ids, phone_ids, normalized_email, normalized_phone)
