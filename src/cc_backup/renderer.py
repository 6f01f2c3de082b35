"""Rendering of sessions into markdown transcripts and JSON snapshots."""

import json
from datetime import datetime, timezone
from typing import Any

from cc_backup.models import ExportFormat, Message, Session

SNAPSHOT_VERSION = "1.0"

TITLE = "# Claude Konuşması"
USER_LABEL = "👤 Kullanıcı"
ASSISTANT_LABEL = "🤖 Claude"
REASONING_SUMMARY = "💭 Düşünce Süreci"
SEPARATOR = "---"

TURKISH_MONTHS = (
    "Ocak",
    "Şubat",
    "Mart",
    "Nisan",
    "Mayıs",
    "Haziran",
    "Temmuz",
    "Ağustos",
    "Eylül",
    "Ekim",
    "Kasım",
    "Aralık",
)


def format_long_date(value: datetime) -> str:
    """Format a date the way the tr-TR locale does: ``1 Ocak 2024``."""
    local = value.astimezone()
    return f"{local.day} {TURKISH_MONTHS[local.month - 1]} {local.year}"


def format_time(value: datetime) -> str:
    """Local time of day as HH:MM:SS."""
    return value.astimezone().strftime("%H:%M:%S")


def format_iso(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def message_label(message: Message) -> str:
    return USER_LABEL if message.kind == "user" else ASSISTANT_LABEL


def _require_messages(session: Session) -> None:
    if session.is_empty or session.start_time is None or session.end_time is None:
        raise ValueError(f"Session {session.session_id} has no messages to render")


def render_markdown(session: Session) -> str:
    """Render a session as a markdown transcript."""
    _require_messages(session)

    lines = [
        TITLE,
        "",
        f"**Tarih:** {format_long_date(session.start_time)}",
        f"**Session ID:** `{session.session_id}`",
        "",
        SEPARATOR,
        "",
    ]

    for msg in session.messages:
        lines.extend([
            f"## {message_label(msg)} ({format_time(msg.timestamp)})",
            "",
            msg.content,
            "",
        ])

        # Reasoning goes in a collapsed block after the visible content
        if msg.reasoning:
            lines.extend([
                "<details>",
                f"<summary>{REASONING_SUMMARY}</summary>",
                "",
                msg.reasoning,
                "",
                "</details>",
                "",
            ])

        lines.extend([SEPARATOR, ""])

    return "\n".join(lines)


def render_snapshot(session: Session, exported_at: datetime | None = None) -> dict[str, Any]:
    """Build the structured snapshot document for a session."""
    _require_messages(session)
    exported_at = exported_at or datetime.now(tz=timezone.utc)

    messages = []
    for msg in session.messages:
        entry: dict[str, Any] = {"type": msg.kind, "content": msg.content}
        if msg.reasoning:
            entry["thinking"] = msg.reasoning
        entry["timestamp"] = format_iso(msg.timestamp)
        entry["uuid"] = msg.id
        messages.append(entry)

    return {
        "version": SNAPSHOT_VERSION,
        "exportedAt": format_iso(exported_at),
        "session": {
            "id": session.session_id,
            "projectPath": session.project_path,
            "startTime": format_iso(session.start_time),
            "endTime": format_iso(session.end_time),
            "messageCount": session.message_count,
        },
        "messages": messages,
    }


def snapshot_json(session: Session, exported_at: datetime | None = None) -> str:
    """Serialize the snapshot as pretty-printed JSON."""
    return json.dumps(render_snapshot(session, exported_at), indent=2, ensure_ascii=False)


def file_name(session: Session, fmt: ExportFormat | str) -> str:
    """Deterministic artifact name: ``YYYY-MM-DD_<first 8 of session id>.<ext>``.

    Depends only on the session's start date (UTC) and id, so re-exports of
    a growing session overwrite the same file.
    """
    _require_messages(session)
    fmt = ExportFormat(fmt)
    date = session.start_time.astimezone(timezone.utc).date().isoformat()
    return f"{date}_{session.session_id[:8]}.{fmt.extension}"


def render(session: Session, fmt: ExportFormat | str, exported_at: datetime | None = None) -> str:
    """Render a session in the given format."""
    fmt = ExportFormat(fmt)
    if fmt is ExportFormat.MARKDOWN:
        return render_markdown(session)
    return snapshot_json(session, exported_at)
