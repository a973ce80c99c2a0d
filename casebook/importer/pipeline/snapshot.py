"""
In-memory view of a tenant's active clients used by duplicate detection.

The snapshot is loaded once per preview or execution and then grown as rows
of the same batch create or update clients, so later rows see earlier ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Iterator, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from casebook.models import Client

from .deterministic import email_local_part, phone_tail

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _zip5(value: object | None) -> str | None:
    if value is None:
        return None
    digits = "".join(char for char in str(value) if char.isalnum())
    return digits[:5].lower() or None


@dataclass(frozen=True)
class ClientCandidate:
    """Match-relevant attributes of one client (existing or created earlier in the batch)."""

    client_id: int | None
    first_name: str | None
    last_name: str | None
    phone_normalized: str | None = None
    email_normalized: str | None = None
    zip_code: str | None = None
    date_of_birth: date | None = None
    updated_at: datetime | None = None
    source_row: int | None = None

    @property
    def key(self) -> str:
        if self.client_id is not None:
            return f"client:{self.client_id}"
        return f"row:{self.source_row}"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def zip5(self) -> str | None:
        return _zip5(self.zip_code)

    @property
    def recency(self) -> datetime:
        value = self.updated_at or _EPOCH
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_client(cls, client: Client) -> "ClientCandidate":
        return cls(
            client_id=client.id,
            first_name=client.first_name,
            last_name=client.last_name,
            phone_normalized=client.phone_normalized,
            email_normalized=client.email_normalized,
            zip_code=client.zip_code,
            date_of_birth=client.date_of_birth,
            updated_at=client.updated_at or client.created_at,
        )

    @classmethod
    def from_values(
        cls,
        values: Mapping[str, Any],
        *,
        client_id: int | None = None,
        source_row: int | None = None,
        updated_at: datetime | None = None,
    ) -> "ClientCandidate":
        """Build from validated client attribute values (``first_name`` etc.)."""

        return cls(
            client_id=client_id,
            first_name=values.get("first_name"),
            last_name=values.get("last_name"),
            phone_normalized=values.get("phone_normalized"),
            email_normalized=values.get("email_normalized"),
            zip_code=values.get("zip_code"),
            date_of_birth=values.get("date_of_birth"),
            updated_at=updated_at or datetime.now(timezone.utc),
            source_row=source_row,
        )


class ClientSnapshot:
    """Indexed collection of ``ClientCandidate`` objects."""

    def __init__(self, candidates: Iterable[ClientCandidate] = ()) -> None:
        self._candidates: dict[str, ClientCandidate] = {}
        self._index: dict[tuple[str, str], dict[str, None]] = {}
        for candidate in candidates:
            self.put(candidate)

    @classmethod
    def load(cls, organization_id: int, session: Session) -> "ClientSnapshot":
        stmt = select(Client).where(Client.organization_id == organization_id, Client.deleted_at.is_(None))
        return cls(ClientCandidate.from_client(client) for client in session.scalars(stmt))

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[ClientCandidate]:
        return iter(self._candidates.values())

    def get(self, key: str) -> ClientCandidate | None:
        return self._candidates.get(key)

    def get_client(self, client_id: int) -> ClientCandidate | None:
        return self._candidates.get(f"client:{client_id}")

    def copy(self) -> "ClientSnapshot":
        return ClientSnapshot(self._candidates.values())

    def put(self, candidate: ClientCandidate) -> None:
        """Insert or replace a candidate, keeping every index in step."""

        self.discard(candidate.key)
        self._candidates[candidate.key] = candidate
        for index_key in self._index_keys(candidate):
            self._index.setdefault(index_key, {})[candidate.key] = None

    def discard(self, key: str) -> None:
        existing = self._candidates.pop(key, None)
        if existing is None:
            return
        for index_key in self._index_keys(existing):
            bucket = self._index.get(index_key)
            if bucket is not None:
                bucket.pop(key, None)

    def lookup(self, kind: str, token: str | None) -> list[ClientCandidate]:
        if not token:
            return []
        bucket = self._index.get((kind, token), {})
        return [self._candidates[key] for key in bucket]

    def by_phone(self, normalized_phone: str | None) -> list[ClientCandidate]:
        return self.lookup("phone", normalized_phone)

    def by_email(self, normalized_email: str | None) -> list[ClientCandidate]:
        return self.lookup("email", normalized_email)

    @staticmethod
    def _index_keys(candidate: ClientCandidate) -> list[tuple[str, str]]:
        keys: list[tuple[str, str]] = []
        if candidate.phone_normalized:
            keys.append(("phone", candidate.phone_normalized))
        tail = phone_tail(candidate.phone_normalized)
        if tail:
            keys.append(("phone_tail", tail))
        if candidate.email_normalized:
            keys.append(("email", candidate.email_normalized))
        local = email_local_part(candidate.email_normalized)
        if local:
            keys.append(("email_local", local))
        if candidate.zip5:
            keys.append(("zip", candidate.zip5))
        if candidate.date_of_birth:
            keys.append(("dob", candidate.date_of_birth.isoformat()))
        return keys
