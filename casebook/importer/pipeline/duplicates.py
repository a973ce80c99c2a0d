"""
Tiered duplicate detection against a tenant's client snapshot.

1. Exact: normalized phone or email equals an active client's -> CERTAIN.
2. Fuzzy: full-name similarity at or above the threshold plus at least one
   secondary signal (zip, date of birth, phone tail, email local part) -> PROBABLE.
3. Otherwise NEW.

Candidates are ordered by score, then by most recent ``updated_at``.
``DuplicateDetector`` never mutates the snapshot it is given.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy.orm import Session

from casebook.importer.adapters.rows import Row
from casebook.importer.mapping import FieldMapping
from casebook.models import DuplicateVerdict, db

from .deterministic import match_exact
from .fuzzy_features import ScoringStrategy, blocking_keys, default_scorer, secondary_signals
from .settings import DuplicateResolution, DuplicateSettings, ResolutionAction
from .snapshot import ClientCandidate, ClientSnapshot
from .validation import prepare_row


@dataclass(frozen=True)
class DuplicateMatch:
    key: str
    client_id: int | None
    source_row: int | None
    name: str
    score: float
    matched_fields: tuple[str, ...]
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "source_row": self.source_row,
            "name": self.name,
            "score": self.score,
            "matched_fields": list(self.matched_fields),
        }


@dataclass(frozen=True)
class RowVerdict:
    row_number: int
    verdict: DuplicateVerdict
    matches: tuple[DuplicateMatch, ...] = ()

    @property
    def best(self) -> DuplicateMatch | None:
        return self.matches[0] if self.matches else None

    @property
    def score(self) -> float | None:
        return self.best.score if self.best else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "verdict": self.verdict.value,
            "score": self.score,
            "matches": [match.to_dict() for match in self.matches],
        }


def _rank(matches: Iterable[DuplicateMatch], limit: int) -> tuple[DuplicateMatch, ...]:
    ordered = sorted(matches, key=lambda match: (match.score, match.updated_at), reverse=True)
    return tuple(ordered[:limit])


class DuplicateDetector:
    """Pure verdict computation; the scorer is injectable."""

    def __init__(self, settings: DuplicateSettings | None = None, scorer: ScoringStrategy | None = None) -> None:
        self.settings = settings or DuplicateSettings()
        self.scorer = scorer or default_scorer()

    def detect(self, rows: Iterable[tuple[int, Mapping[str, Any]]], snapshot: ClientSnapshot) -> list[RowVerdict]:
        return [self.detect_row(row_number, values, snapshot) for row_number, values in rows]

    def detect_row(self, row_number: int, values: Mapping[str, Any], snapshot: ClientSnapshot) -> RowVerdict:
        if not self.settings.enabled:
            return RowVerdict(row_number, DuplicateVerdict.NEW)

        row = ClientCandidate.from_values(values, source_row=row_number)
        exact = match_exact(
            snapshot,
            normalized_phone=row.phone_normalized,
            normalized_email=row.email_normalized,
        )
        if exact.is_match:
            matches = []
            for key in exact.matched_keys:
                candidate = snapshot.get(key)
                if candidate is None:
                    continue
                fields = []
                if key in exact.phone_match_ids:
                    fields.append("phone")
                if key in exact.email_match_ids:
                    fields.append("email")
                matches.append(self._match(candidate, 1.0, fields))
            return RowVerdict(row_number, DuplicateVerdict.CERTAIN, _rank(matches, self.settings.max_matches))

        fuzzy = self._fuzzy_matches(row, snapshot)
        if fuzzy:
            return RowVerdict(row_number, DuplicateVerdict.PROBABLE, _rank(fuzzy, self.settings.max_matches))
        return RowVerdict(row_number, DuplicateVerdict.NEW)

    def _fuzzy_matches(self, row: ClientCandidate, snapshot: ClientSnapshot) -> list[DuplicateMatch]:
        name = row.full_name
        if not name:
            return []
        seen: set[str] = set()
        matches: list[DuplicateMatch] = []
        for kind, token in blocking_keys(row, self.settings.match_fields):
            for candidate in snapshot.lookup(kind, token):
                if candidate.key in seen:
                    continue
                seen.add(candidate.key)
                similarity = float(self.scorer.score(name, candidate.full_name))
                if similarity < self.settings.threshold:
                    continue
                signals = secondary_signals(row, candidate, self.settings.match_fields)
                if signals:
                    matches.append(self._match(candidate, similarity, ["name", *signals]))
        return matches

    @staticmethod
    def _match(candidate: ClientCandidate, score: float, fields: Sequence[str]) -> DuplicateMatch:
        return DuplicateMatch(
            key=candidate.key,
            client_id=candidate.client_id,
            source_row=candidate.source_row,
            name=candidate.full_name,
            score=round(max(0.0, min(1.0, score)), 4),
            matched_fields=tuple(fields),
            updated_at=candidate.recency,
        )


@dataclass(frozen=True)
class ResolvedAction:
    action: ResolutionAction
    client_id: int | None = None
    source_row: int | None = None
    overridden: bool = False
    note: str | None = None

    @property
    def is_write(self) -> bool:
        return self.action in {ResolutionAction.UPDATE, ResolutionAction.MERGE}

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "client_id": self.client_id,
            "source_row": self.source_row,
            "overridden": self.overridden,
            "note": self.note,
        }


def resolve_action(
    verdict: RowVerdict,
    settings: DuplicateSettings,
    resolution: DuplicateResolution | None = None,
) -> ResolvedAction:
    """
    Apply an explicit per-row resolution, else the policy default for the verdict.

    Update and merge target the resolution's ``client_id`` or the best match.
    Without either the row is skipped.
    """

    if resolution is not None:
        action = resolution.action
        overridden = True
    else:
        action = settings.action_for(verdict.verdict)
        overridden = False

    if action in {ResolutionAction.CREATE, ResolutionAction.SKIP}:
        return ResolvedAction(action, overridden=overridden)

    if resolution is not None and resolution.client_id is not None:
        return ResolvedAction(action, client_id=resolution.client_id, overridden=overridden)
    best = verdict.best
    if best is None:
        return ResolvedAction(ResolutionAction.SKIP, overridden=overridden, note="no_match_to_update")
    return ResolvedAction(action, client_id=best.client_id, source_row=best.source_row, overridden=overridden)


def summarize(verdicts: Iterable[RowVerdict], actions: Iterable[ResolvedAction] = ()) -> dict[str, Any]:
    verdict_list = list(verdicts)
    by_verdict = Counter(verdict.verdict.value for verdict in verdict_list)
    by_action = Counter(action.action.value for action in actions)
    return {
        "total_rows": len(verdict_list),
        "rows_with_matches": sum(1 for verdict in verdict_list if verdict.matches),
        "by_verdict": {verdict.value: by_verdict.get(verdict.value, 0) for verdict in DuplicateVerdict},
        "by_action": dict(sorted(by_action.items())),
    }


def detect_duplicates(
    organization_id: int,
    rows: Iterable[tuple[int, Row]],
    mappings: Sequence[FieldMapping],
    settings: DuplicateSettings | None = None,
    *,
    scorer: ScoringStrategy | None = None,
    session: Session | None = None,
    default_region: str = "1",
) -> list[RowVerdict]:
    """Map rows and classify each against the tenant's current active clients."""

    session = session or db.session
    snapshot = ClientSnapshot.load(organization_id, session)
    detector = DuplicateDetector(settings, scorer)
    prepared = [
        (row_number, prepare_row(row, mappings, default_region=default_region).values) for row_number, row in rows
    ]
    return detector.detect(prepared, snapshot)
