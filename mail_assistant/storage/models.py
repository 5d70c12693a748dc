"""Context log entries and their JSON representation."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ContextType(str, Enum):
    CONVERSATION = "conversation"
    WORK_SUMMARY = "work_summary"
    SCHEDULE = "schedule"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> ContextType:
        """Map unknown on-disk values to OTHER rather than failing the whole load."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


def new_entry_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass(frozen=True)
class ContextEntry:
    """One unit of a user's interaction history. Never edited once appended."""

    id: str
    timestamp: datetime
    type: ContextType
    content: str
    metadata: dict[str, Any] | None = field(default=None, compare=True)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            "content": self.content,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextEntry:
        """Build an entry from its JSON form; timestamps are ISO strings.

        A trailing ``Z`` is accepted for files written by other tools.
        """
        raw_ts = str(data["timestamp"])
        if raw_ts.endswith("Z"):
            raw_ts = raw_ts[:-1] + "+00:00"
        timestamp = datetime.fromisoformat(raw_ts)
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone().replace(tzinfo=None)
        metadata = data.get("metadata")
        return cls(
            id=str(data.get("id") or new_entry_id()),
            timestamp=timestamp,
            type=ContextType.parse(str(data.get("type", "other"))),
            content=str(data.get("content", "")),
            metadata=dict(metadata) if isinstance(metadata, dict) else None,
        )

    def render(self) -> str:
        """One-line form used in prompts."""
        return f"[{self.timestamp.isoformat(timespec='minutes')}] {self.type.value}: {self.content}"
