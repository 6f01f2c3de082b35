"""Per-project _index.md generation.

The index is rebuilt from the markdown transcripts already on disk, so it
also covers sessions exported by earlier runs.
"""

import logging
import re
from datetime import datetime
from pathlib import Path

from cc_backup.models import IndexEntry
from cc_backup.renderer import ASSISTANT_LABEL, USER_LABEL

logger = logging.getLogger("cc_backup.index")

INDEX_FILE_NAME = "_index.md"
DEFAULT_TOPIC = "Konuşma"
TOPIC_MAX_CHARS = 60
TOPIC_TRUNCATE_AT = 57

SESSION_ID_RE = re.compile(r"\*\*Session ID:\*\* `([^`]+)`")
FIRST_USER_RE = re.compile(rf"## {re.escape(USER_LABEL)} \([^)]+\)\n\n([^\n]+)")
USER_HEADER_RE = re.compile(rf"^## {re.escape(USER_LABEL)}", re.MULTILINE)
ASSISTANT_HEADER_RE = re.compile(rf"^## {re.escape(ASSISTANT_LABEL)}", re.MULTILINE)
TAG_RE = re.compile(r"<[^>]+>")
DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")


def clean_topic(text: str) -> str:
    """Strip HTML/XML tags and shorten to fit a table cell."""
    topic = TAG_RE.sub("", text).strip()
    if len(topic) > TOPIC_MAX_CHARS:
        topic = topic[:TOPIC_TRUNCATE_AT] + "..."
    return topic


def read_index_entry(path: Path) -> IndexEntry:
    """Recover index metadata from a rendered markdown transcript."""
    content = path.read_text(encoding="utf-8", errors="replace")

    session_match = SESSION_ID_RE.search(content)
    short_id = session_match.group(1)[:8] if session_match else "unknown"

    topic_match = FIRST_USER_RE.search(content)
    topic = clean_topic(topic_match.group(1)) if topic_match else DEFAULT_TOPIC

    message_count = len(USER_HEADER_RE.findall(content)) + len(ASSISTANT_HEADER_RE.findall(content))

    date_match = DATE_PREFIX_RE.match(path.name)
    date = date_match.group(1) if date_match else "unknown"

    return IndexEntry(
        date=date,
        short_session_id=short_id,
        topic=topic,
        message_count=message_count,
        file_name=path.name,
    )


def build_index_entries(project_output_dir: Path) -> list[IndexEntry]:
    """Collect entries for every transcript in a project directory, newest first."""
    entries = [
        read_index_entry(path)
        for path in sorted(project_output_dir.glob("*.md"))
        if path.name != INDEX_FILE_NAME and path.is_file()
    ]
    entries.sort(key=lambda e: e.date, reverse=True)
    return entries


def render_index(project_name: str, entries: list[IndexEntry], generated_at: datetime) -> str:
    """Render the index document."""
    lines = [
        "# Konuşma Geçmişi",
        "",
        f"**Proje:** `{project_name}`",
        f"**Toplam Konuşma:** {len(entries)}",
        "",
        "---",
        "",
        "| Tarih | Konu | Mesaj | Dosya |",
        "|-------|------|-------|-------|",
    ]

    for entry in entries:
        topic = entry.topic.replace("|", "\\|")
        lines.append(
            f"| {entry.date} | {topic} | {entry.message_count} "
            f"| [{entry.short_session_id}.md]({entry.file_name}) |"
        )

    stamp = generated_at.astimezone().strftime("%d.%m.%Y %H:%M:%S")
    lines.extend([
        "",
        "---",
        "",
        f"*Bu dosya otomatik oluşturulmuştur. Son güncelleme: {stamp}*",
        "",
    ])
    return "\n".join(lines)


def rebuild_index(project_output_dir: Path, now: datetime | None = None) -> Path:
    """Regenerate ``_index.md`` for one project output directory."""
    entries = build_index_entries(project_output_dir)
    content = render_index(project_output_dir.name, entries, now or datetime.now().astimezone())

    index_path = project_output_dir / INDEX_FILE_NAME
    index_path.write_text(content, encoding="utf-8", errors="replace")
    logger.info(f"Index updated: {project_output_dir.name}/{INDEX_FILE_NAME}")
    return index_path


def rebuild_all(output_root: Path, now: datetime | None = None) -> list[Path]:
    """Regenerate the index of every project directory under ``output_root``."""
    if not output_root.is_dir():
        return []
    return [
        rebuild_index(project_dir, now)
        for project_dir in sorted(output_root.iterdir())
        if project_dir.is_dir()
    ]
