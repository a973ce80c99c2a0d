"""
Duplicate policy and per-row resolution overrides supplied by the caller.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from casebook.importer.errors import ValidationError
from casebook.models import DuplicateVerdict

from .fuzzy_features import SECONDARY_SIGNALS

DEFAULT_THRESHOLD = 0.8
DEFAULT_MAX_MATCHES = 5


class ResolutionAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    MERGE = "merge"

    @classmethod
    def parse(cls, value: Any, *, field: str) -> "ResolutionAction":
        token = str(value or "").strip().lower()
        # Older clients send CREATE_NEW / MERGE_INTO style tokens.
        token = {"create_new": "create", "merge_into": "merge", "update_existing": "update"}.get(token, token)
        try:
            return cls(token)
        except ValueError:
            allowed = ", ".join(action.value for action in cls)
            raise ValidationError(f"Invalid action '{value}'. Expected one of: {allowed}.", field=field) from None


@dataclass(frozen=True)
class DuplicateSettings:
    enabled: bool = True
    threshold: float = DEFAULT_THRESHOLD
    probable_action: ResolutionAction = ResolutionAction.SKIP
    certain_action: ResolutionAction = ResolutionAction.UPDATE
    new_action: ResolutionAction = ResolutionAction.CREATE
    match_fields: tuple[str, ...] = SECONDARY_SIGNALS
    max_matches: int = DEFAULT_MAX_MATCHES

    @classmethod
    def coerce(cls, payload: Mapping[str, Any] | None) -> "DuplicateSettings":
        """Build settings from request JSON; absent keys keep their defaults."""

        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise ValidationError("duplicate_settings must be an object.", field="duplicate_settings")

        enabled = payload.get("enabled", True)
        if isinstance(enabled, str):
            enabled = enabled.strip().lower() in {"1", "true", "yes", "on"}

        raw_threshold = payload.get("threshold", DEFAULT_THRESHOLD)
        try:
            threshold = float(raw_threshold)
        except (TypeError, ValueError):
            raise ValidationError("threshold must be a number.", field="threshold") from None
        if threshold > 1.0 and threshold <= 100.0:
            threshold = threshold / 100.0
        if not 0.0 < threshold <= 1.0:
            raise ValidationError("threshold must be within (0, 1].", field="threshold")

        probable = payload.get("probable_action", payload.get("default_action", payload.get("defaultAction")))
        certain = payload.get("certain_action")
        new = payload.get("new_action")

        raw_fields = payload.get("match_fields", payload.get("matchFields"))
        if raw_fields is None:
            match_fields = SECONDARY_SIGNALS
        else:
            if isinstance(raw_fields, str):
                raw_fields = [token for token in raw_fields.split(",") if token.strip()]
            match_fields = tuple(str(token).strip() for token in raw_fields)
            unknown = [token for token in match_fields if token not in SECONDARY_SIGNALS]
            if unknown:
                raise ValidationError(
                    f"Unknown match fields: {', '.join(unknown)}. Expected any of: {', '.join(SECONDARY_SIGNALS)}.",
                    field="match_fields",
                )

        raw_max = payload.get("max_matches", DEFAULT_MAX_MATCHES)
        try:
            max_matches = max(1, min(int(raw_max), 25))
        except (TypeError, ValueError):
            raise ValidationError("max_matches must be an integer.", field="max_matches") from None

        return cls(
            enabled=bool(enabled),
            threshold=threshold,
            probable_action=(
                ResolutionAction.parse(probable, field="probable_action") if probable else ResolutionAction.SKIP
            ),
            certain_action=(
                ResolutionAction.parse(certain, field="certain_action") if certain else ResolutionAction.UPDATE
            ),
            new_action=ResolutionAction.parse(new, field="new_action") if new else ResolutionAction.CREATE,
            match_fields=match_fields,
            max_matches=max_matches,
        )

    def action_for(self, verdict: DuplicateVerdict) -> ResolutionAction:
        if verdict is DuplicateVerdict.CERTAIN:
            return self.certain_action
        if verdict is DuplicateVerdict.PROBABLE:
            return self.probable_action
        return self.new_action

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("probable_action", "certain_action", "new_action"):
            payload[key] = payload[key].value
        payload["match_fields"] = list(self.match_fields)
        return payload


@dataclass(frozen=True)
class DuplicateResolution:
    row_number: int
    action: ResolutionAction
    client_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "client_id": self.client_id}

    @classmethod
    def coerce_many(cls, payload: Any) -> dict[int, "DuplicateResolution"]:
        """
        Accept ``{"<row>": {"action", "client_id"}}``, ``{"<row>": "skip"}`` or a
        list of ``{"row_number", "action", "client_id"}`` objects.
        """

        if payload in (None, {}, []):
            return {}
        if isinstance(payload, Mapping):
            items = list(payload.items())
        elif isinstance(payload, (list, tuple)):
            items = []
            for entry in payload:
                if not isinstance(entry, Mapping):
                    raise ValidationError("Each resolution must be an object.", field="resolutions")
                items.append((entry.get("row_number", entry.get("rowNumber")), entry))
        else:
            raise ValidationError("resolutions must be an object keyed by row number.", field="resolutions")

        resolutions: dict[int, DuplicateResolution] = {}
        for raw_row, entry in items:
            try:
                row_number = int(raw_row)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid row number '{raw_row}'.", field="resolutions") from None
            if row_number < 1:
                raise ValidationError(f"Invalid row number '{raw_row}'.", field="resolutions")
            if isinstance(entry, Mapping):
                action = ResolutionAction.parse(entry.get("action"), field="resolutions")
                raw_client = entry.get("client_id", entry.get("clientId", entry.get("target_id")))
            else:
                action = ResolutionAction.parse(entry, field="resolutions")
                raw_client = None
            client_id = None
            if raw_client not in (None, ""):
                try:
                    client_id = int(raw_client)
                except (TypeError, ValueError):
                    raise ValidationError(
                        f"Invalid client id '{raw_client}' for row {row_number}.",
                        field="resolutions",
                        row_number=row_number,
                    ) from None
            if action is ResolutionAction.MERGE and client_id is None:
                raise ValidationError(
                    f"Row {row_number}: merge requires client_id.",
                    field="resolutions",
                    row_number=row_number,
                )
            resolutions[row_number] = cls(row_number=row_number, action=action, client_id=client_id)
        return resolutions


def resolutions_to_dict(resolutions: Mapping[int, DuplicateResolution]) -> dict[str, Any]:
    return {str(row_number): resolution.to_dict() for row_number, resolution in sorted(resolutions.items())}
