from __future__ import annotations

from datetime import datetime, timezone

import pytest

from casebook.importer.pipeline.deterministic import normalize_email, normalize_phone
from casebook.importer.pipeline.service import ImportService
from casebook.models import Client, ImportBatch, db


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


class StubScorer:
    """Deterministic name scorer: fixed scores per (row name, client name) pair."""

    def __init__(self, scores: dict[tuple[str, str], float] | None = None, default: float = 0.0) -> None:
        self.scores = {(a.lower(), b.lower()): value for (a, b), value in (scores or {}).items()}
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def score(self, a: str, b: str) -> float:
        self.calls.append((a, b))
        return self.scores.get((a.lower(), b.lower()), self.default)


NAME_PHONE_MAPPINGS = [
    {"source_column": "Name", "target_field": "client.fullName"},
    {"source_column": "Phone", "target_field": "client.phone"},
]


@pytest.fixture
def client_factory(test_organization):
    def _factory(
        first_name: str,
        last_name: str,
        *,
        phone: str | None = None,
        email: str | None = None,
        zip_code: str | None = None,
        date_of_birth=None,
        organization=None,
        updated_at: datetime | None = None,
    ) -> Client:
        client = Client(
            organization_id=(organization or test_organization).id,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            phone_normalized=normalize_phone(phone),
            email=email,
            email_normalized=normalize_email(email),
            zip_code=zip_code,
            date_of_birth=date_of_birth,
        )
        if updated_at is not None:
            client.updated_at = updated_at
        db.session.add(client)
        db.session.commit()
        return client

    return _factory


@pytest.fixture
def upload_batch(test_organization):
    def _upload(payload: bytes, file_name: str = "clients.csv", *, organization=None, actor_id: int = 7) -> ImportBatch:
        org = organization or test_organization
        result = ImportService().upload(org.id, actor_id, file_name, payload)
        return db.session.get(ImportBatch, result.batch_id)

    return _upload


@pytest.fixture
def name_phone_batch(upload_batch, client_factory):
    """Three Name,Phone rows; row 2's phone belongs to an existing client."""

    existing = client_factory(
        "Bea",
        "Existing",
        phone="(555) 201-0002",
        updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    batch = upload_batch(
        csv_bytes(
            "Name,Phone",
            "Alice Smith,555-201-0001",
            "Bea Jones,555.201.0002",
            "Carl Diaz,5552010003",
        )
    )
    return batch, existing


@pytest.fixture
def make_csv():
    return csv_bytes


@pytest.fixture
def scorer_factory():
    return StubScorer
