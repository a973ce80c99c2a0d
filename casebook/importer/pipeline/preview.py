"""
Dry-run projection of an execution.

The builder runs the same mapping, validation, detection and resolution steps
as the executor against a private snapshot copy. Neither records nor clients
are written, so the preview can be requested repeatedly while the caller
iterates on mappings and policy.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Sequence

from sqlalchemy.orm import Session

from casebook.importer.adapters.rows import Row
from casebook.importer.mapping import FieldMapping, ensure_minimum_mapping
from casebook.models import DuplicateVerdict, ImportBatch, db

from .batch_store import BatchStore
from .duplicates import DuplicateDetector, ResolvedAction, RowVerdict, resolve_action, summarize
from .fuzzy_features import ScoringStrategy
from .settings import DuplicateResolution, DuplicateSettings, ResolutionAction
from .snapshot import ClientCandidate, ClientSnapshot
from .validation import prepare_row


@dataclass
class PreviewRow:
    row_number: int
    record_status: str
    source: dict[str, Any]
    mapped: dict[str, Any]
    errors: list[str]
    verdict: RowVerdict | None
    resolved: ResolvedAction | None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "record_status": self.record_status,
            "source": self.source,
            "mapped": self.mapped,
            "valid": self.is_valid,
            "errors": list(self.errors),
            "verdict": self.verdict.verdict.value if self.verdict else None,
            "score": self.verdict.score if self.verdict else None,
            "matches": [match.to_dict() for match in self.verdict.matches] if self.verdict else [],
            "action": self.resolved.action.value if self.resolved else None,
            "target_client_id": self.resolved.client_id if self.resolved else None,
            "target_row": self.resolved.source_row if self.resolved else None,
            "overridden": self.resolved.overridden if self.resolved else False,
        }


@dataclass
class PreviewReport:
    batch_id: int
    total_rows: int
    rows: list[PreviewRow]
    summary: dict[str, int]
    duplicates: dict[str, Any]
    truncated: bool = False
    mappings: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total_rows": self.total_rows,
            "summary": dict(self.summary),
            "duplicates": self.duplicates,
            "mappings": list(self.mappings),
            "rows": [row.to_dict() for row in self.rows],
            "truncated": self.truncated,
        }


def _apply_to_candidate(candidate: ClientCandidate, values: Mapping[str, Any], merge_only: bool) -> ClientCandidate:
    changes: dict[str, Any] = {}
    for attribute in ("first_name", "last_name", "phone_normalized", "email_normalized", "zip_code", "date_of_birth"):
        value = values.get(attribute)
        if value in (None, ""):
            continue
        if merge_only and getattr(candidate, attribute) not in (None, ""):
            continue
        changes[attribute] = value
    return replace(candidate, **changes) if changes else candidate


class PreviewBuilder:
    def __init__(
        self,
        session: Session | None = None,
        *,
        scorer: ScoringStrategy | None = None,
        default_region: str = "1",
    ) -> None:
        self.session: Session = session or db.session
        self.store = BatchStore(self.session)
        self.scorer = scorer
        self.default_region = default_region

    def build(
        self,
        batch: ImportBatch,
        mappings: Sequence[FieldMapping],
        settings: DuplicateSettings | None = None,
        resolutions: Mapping[int, DuplicateResolution] | None = None,
        *,
        limit: int | None = None,
    ) -> PreviewReport:
        ensure_minimum_mapping(mappings)
        settings = settings or DuplicateSettings()
        resolutions = resolutions or {}
        snapshot = ClientSnapshot.load(batch.organization_id, self.session)
        detector = DuplicateDetector(settings, self.scorer)

        rows: list[PreviewRow] = []
        verdicts: list[RowVerdict] = []
        actions: list[ResolvedAction] = []
        summary = {
            "new_records": 0,
            "potential_updates": 0,
            "potential_duplicates": 0,
            "validation_errors": 0,
            "skipped": 0,
        }
        for record in self.store.iter_records(batch.id):
            row = Row.from_json(record.source_json)
            prepared = prepare_row(row, mappings, default_region=self.default_region)
            verdict: RowVerdict | None = None
            resolved: ResolvedAction | None = None
            errors = list(prepared.errors)
            if prepared.is_valid:
                verdict = detector.detect_row(record.row_number, prepared.values, snapshot)
                resolved = resolve_action(verdict, settings, resolutions.get(record.row_number))
                errors.extend(self._simulate(resolved, record.row_number, prepared.values, snapshot))
                verdicts.append(verdict)
                actions.append(resolved)

            if errors:
                summary["validation_errors"] += 1
            else:
                if verdict.verdict is not DuplicateVerdict.NEW:
                    summary["potential_duplicates"] += 1
                if resolved.action is ResolutionAction.CREATE:
                    summary["new_records"] += 1
                elif resolved.action is ResolutionAction.SKIP:
                    summary["skipped"] += 1
                else:
                    summary["potential_updates"] += 1

            if limit is None or len(rows) < limit:
                rows.append(
                    PreviewRow(
                        row_number=record.row_number,
                        record_status=record.status.value,
                        source=row.as_text_dict(),
                        mapped=prepared.mapped_json(),
                        errors=errors,
                        verdict=verdict,
                        resolved=resolved,
                    )
                )

        return PreviewReport(
            batch_id=batch.id,
            total_rows=batch.total_rows,
            rows=rows,
            summary=summary,
            duplicates=summarize(verdicts, actions),
            truncated=limit is not None and batch.total_rows > len(rows),
            mappings=[mapping.to_dict() for mapping in mappings],
        )

    @staticmethod
    def _simulate(
        resolved: ResolvedAction,
        row_number: int,
        values: Mapping[str, Any],
        snapshot: ClientSnapshot,
    ) -> list[str]:
        """Grow the private snapshot the way execution would; return target errors."""

        if resolved.action is ResolutionAction.CREATE:
            snapshot.put(ClientCandidate.from_values(values, source_row=row_number))
            return []
        if not resolved.is_write:
            return []
        if resolved.client_id is not None:
            target = snapshot.get_client(resolved.client_id)
        else:
            target = snapshot.get(f"row:{resolved.source_row}")
        if target is None:
            return [f"client.id: client {resolved.client_id} was not found in this organization"]
        snapshot.put(_apply_to_candidate(target, values, resolved.action is ResolutionAction.MERGE))
        return []
