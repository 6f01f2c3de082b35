"""Data models for cc-backup."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

UNKNOWN_SESSION = "unknown"
MESSAGE_KINDS = ("user", "assistant")


class ExportFormat(str, Enum):
    """Artifact formats the engine can write."""

    MARKDOWN = "markdown"
    JSON = "json"

    @property
    def extension(self) -> str:
        return "md" if self is ExportFormat.MARKDOWN else "json"


@dataclass
class RawRecord:
    """One decoded JSONL line, before normalization."""

    type: str | None = None
    role: str | None = None
    parts: list[tuple[str, str]] = field(default_factory=list)
    uuid: str = ""
    timestamp: Any = None
    session_id: str = ""

    @classmethod
    def from_json(cls, data: Any) -> "RawRecord | None":
        """Build a record from decoded JSON, tolerating missing fields."""
        if not isinstance(data, dict):
            return None

        message = data.get("message")
        if not isinstance(message, dict):
            message = {}

        role = message.get("role")
        content = message.get("content")

        parts: list[tuple[str, str]] = []
        if isinstance(content, str):
            # Plain-string prompts are a single text part
            parts.append(("text", content))
        elif isinstance(content, list):
            for item in content:
                if not isinstance(item, dict):
                    continue
                part_type = item.get("type")
                if part_type == "text":
                    text = item.get("text")
                elif part_type == "thinking":
                    text = item.get("thinking")
                else:
                    continue
                if isinstance(text, str):
                    parts.append((part_type, text))

        record_type = data.get("type")
        uuid = data.get("uuid")
        session_id = data.get("sessionId")

        return cls(
            type=record_type if isinstance(record_type, str) else None,
            role=role if isinstance(role, str) else None,
            parts=parts,
            uuid=uuid if isinstance(uuid, str) else "",
            timestamp=data.get("timestamp"),
            session_id=session_id if isinstance(session_id, str) else "",
        )


@dataclass
class Message:
    """A normalized user or assistant turn."""

    kind: str  # "user" | "assistant"
    content: str
    timestamp: datetime
    id: str = ""
    session_id: str = ""
    role: str | None = None
    reasoning: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in MESSAGE_KINDS:
            raise ValueError(f"Unsupported message kind: {self.kind!r}")
        if not self.content and not self.reasoning:
            raise ValueError("Message needs content or reasoning")


@dataclass
class Session:
    """All captured messages of one log file."""

    session_id: str
    project_path: str
    messages: list[Message] = field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def is_empty(self) -> bool:
        return not self.messages


@dataclass
class IndexEntry:
    """One row of a project's _index.md."""

    date: str
    short_session_id: str
    topic: str
    message_count: int
    file_name: str
