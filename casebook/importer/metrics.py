"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_uploads_counter = Counter(
    "importer_batches_uploaded_total",
    "Import batches accepted at upload, by file format.",
    ["file_format"],
)
_parse_failures_counter = Counter(
    "importer_parse_failures_total",
    "Uploads rejected by the parser.",
)
_rows_counter = Counter(
    "importer_rows_processed_total",
    "Rows processed by the executor, by outcome.",
    ["outcome"],
)
_execution_duration = Histogram(
    "importer_batch_execution_duration_seconds",
    "Duration of batch execution in seconds.",
    ["status"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 900),
)
_rollback_counter = Counter(
    "importer_rollbacks_total",
    "Rollback attempts by outcome.",
    ["outcome"],
)


def record_upload(file_format: str) -> None:
    _uploads_counter.labels(file_format=file_format).inc()


def record_parse_failure() -> None:
    _parse_failures_counter.inc()


def record_row_outcome(outcome: Literal["created", "updated", "skipped", "invalid", "failed"], count: int = 1) -> None:
    """Increment the per-outcome row counter."""

    if count <= 0:
        return
    _rows_counter.labels(outcome=outcome).inc(count)


def record_execution(*, status: Literal["completed", "failed"], duration_seconds: float) -> None:
    _execution_duration.labels(status=status).observe(max(duration_seconds, 0.0))


def record_rollback(outcome: Literal["success", "unavailable", "failure"]) -> None:
    _rollback_counter.labels(outcome=outcome).inc()
