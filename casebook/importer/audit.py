"""Audit events emitted by the importer.

Events go to the ``casebook.audit`` logger; where they are stored is the
deployment's concern.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

audit_logger = logging.getLogger("casebook.audit")

BATCH_UPLOADED = "import.batch.uploaded"
BATCH_EXECUTED = "import.batch.executed"
BATCH_FAILED = "import.batch.failed"
BATCH_ROLLED_BACK = "import.batch.rolled_back"
BATCH_ROLLBACK_FAILED = "import.batch.rollback_failed"


def emit(
    event: str,
    *,
    organization_id: int,
    batch_id: int,
    actor_id: int | None = None,
    counts: Mapping[str, Any] | None = None,
    **details: Any,
) -> None:
    audit_logger.info(
        event,
        extra={
            "audit_event": event,
            "audit_actor_id": actor_id,
            "audit_organization_id": organization_id,
            "audit_batch_id": batch_id,
            "audit_counts": dict(counts or {}),
            "audit_details": details,
        },
    )
