"""JSONL session log parsing and session assembly."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cc_backup.models import MESSAGE_KINDS, UNKNOWN_SESSION, Message, RawRecord, Session

# Dedup key uses this many leading characters of the content
DEDUP_PREFIX_CHARS = 50

# Epoch values above this are treated as milliseconds
EPOCH_MS_THRESHOLD = 1e11


def parse_timestamp(value: Any, now: datetime | None = None) -> datetime:
    """Parse a record timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (with or without a trailing Z) and epoch
    values in seconds or milliseconds, as numbers or numeric strings.
    Anything else falls back to ``now`` (processing time).
    """
    fallback = now or datetime.now(tz=timezone.utc)

    if isinstance(value, bool) or value is None:
        return fallback

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return fallback
        try:
            value = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return fallback
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        try:
            seconds = value / 1000 if abs(value) > EPOCH_MS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback

    return fallback


def parse_line(line: str, now: datetime | None = None) -> Message | None:
    """Parse one JSONL line into a Message.

    Returns None for blank lines, invalid JSON, record types other than
    user/assistant, and records without text or thinking content.
    """
    if not line.strip():
        return None

    try:
        data = json.loads(line)
    except (json.JSONDecodeError, RecursionError):
        # Partial, corrupt or absurdly nested line; the rest of the file is still usable
        return None

    record = RawRecord.from_json(data)
    if record is None or record.type not in MESSAGE_KINDS:
        return None
    if not record.parts:
        return None

    content = ""
    reasoning = ""
    for part_type, text in record.parts:
        if part_type == "text" and text:
            content += text
        elif part_type == "thinking" and text:
            reasoning = text

    if not content and not reasoning:
        return None

    return Message(
        kind=record.type,
        role=record.role,
        content=content,
        reasoning=reasoning or None,
        timestamp=parse_timestamp(record.timestamp, now),
        id=record.uuid,
        session_id=record.session_id,
    )


def parse_file(content: str, now: datetime | None = None) -> list[Message]:
    """Parse a whole log file into an ordered, deduplicated message list.

    Claude Code rewrites a streamed message several times as it grows, so
    messages sharing an id and content prefix are collapsed to the first
    occurrence. Reasoning-only messages are left out of the transcript.
    """
    messages: list[Message] = []
    seen: set[tuple[str, str]] = set()

    for line in content.split("\n"):
        message = parse_line(line, now)
        if message is None or not message.content:
            continue

        key = (message.id, message.content[:DEDUP_PREFIX_CHARS])
        if key in seen:
            continue
        seen.add(key)
        messages.append(message)

    return messages


def assemble_session(source_path: Path | str, messages: list[Message]) -> Session:
    """Group parsed messages from one log file into a Session."""
    first = messages[0] if messages else None

    session_id = first.session_id if first and first.session_id else UNKNOWN_SESSION
    # projectPath mirrors the session id when present; exported JSON depends on it
    project_path = first.session_id if first and first.session_id else str(source_path)

    start_time = None
    end_time = None
    if messages:
        timestamps = [m.timestamp for m in messages]
        start_time = min(timestamps)
        end_time = max(timestamps)

    return Session(
        session_id=session_id,
        project_path=project_path,
        messages=list(messages),
        start_time=start_time,
        end_time=end_time,
    )


def parse_session(path: Path) -> Session:
    """Read a log file from disk and assemble its Session."""
    content = path.read_text(encoding="utf-8", errors="replace")
    return assemble_session(path, parse_file(content))
