"""
Name similarity scoring and secondary match signals for fuzzy dedupe.

Scorers implement ``ScoringStrategy`` (``score(a, b) -> float`` in 0..1) so
detection can be exercised with deterministic stubs.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rapidfuzz import fuzz, utils
from rapidfuzz.distance import JaroWinkler

from .deterministic import email_local_part, phone_tail
from .snapshot import ClientCandidate

SECONDARY_SIGNALS = ("zip", "dateOfBirth", "phone", "email")


@runtime_checkable
class ScoringStrategy(Protocol):
    def score(self, a: str, b: str) -> float:
        ...


class TokenSetScorer:
    """rapidfuzz token-set ratio over processed names; word order and extra tokens are ignored."""

    def score(self, a: str, b: str) -> float:
        left = utils.default_process(a or "")
        right = utils.default_process(b or "")
        if not left or not right:
            return 0.0
        return float(max(0.0, min(1.0, fuzz.token_set_ratio(left, right) / 100.0)))


class JaroWinklerScorer:
    def score(self, a: str, b: str) -> float:
        left = (a or "").strip().lower()
        right = (b or "").strip().lower()
        if not left or not right:
            return 0.0
        return float(max(0.0, min(1.0, JaroWinkler.normalized_similarity(left, right))))


def default_scorer() -> ScoringStrategy:
    return TokenSetScorer()


def secondary_signals(
    row: ClientCandidate,
    candidate: ClientCandidate,
    enabled: tuple[str, ...] = SECONDARY_SIGNALS,
) -> list[str]:
    """Return the names of secondary signals shared by ``row`` and ``candidate``."""

    matched: list[str] = []
    if "zip" in enabled and row.zip5 and row.zip5 == candidate.zip5:
        matched.append("zip")
    if "dateOfBirth" in enabled and row.date_of_birth and row.date_of_birth == candidate.date_of_birth:
        matched.append("dateOfBirth")
    if "phone" in enabled:
        tail = phone_tail(row.phone_normalized)
        if tail and tail == phone_tail(candidate.phone_normalized):
            matched.append("phone")
    if "email" in enabled:
        local = email_local_part(row.email_normalized)
        if local and local == email_local_part(candidate.email_normalized):
            matched.append("email")
    return matched


def blocking_keys(row: ClientCandidate, enabled: tuple[str, ...] = SECONDARY_SIGNALS) -> list[tuple[str, str]]:
    """Snapshot index keys under which fuzzy candidates for ``row`` can live."""

    keys: list[tuple[str, str]] = []
    if "zip" in enabled and row.zip5:
        keys.append(("zip", row.zip5))
    if "dateOfBirth" in enabled and row.date_of_birth:
        keys.append(("dob", row.date_of_birth.isoformat()))
    if "phone" in enabled:
        tail = phone_tail(row.phone_normalized)
        if tail:
            keys.append(("phone_tail", tail))
    if "email" in enabled:
        local = email_local_part(row.email_normalized)
        if local:
            keys.append(("email_local", local))
    return keys
