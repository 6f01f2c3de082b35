"""Pytest fixtures for cc-backup tests."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_record(
    record_type: str,
    text: str | None = None,
    uuid: str = "",
    timestamp: str | None = "2024-01-01T10:00:00Z",
    session_id: str = "s-123",
    thinking: str | None = None,
) -> dict:
    """Build a Claude Code style JSONL record."""
    content = []
    if thinking is not None:
        content.append({"type": "thinking", "thinking": thinking})
    if text is not None:
        content.append({"type": "text", "text": text})

    record = {
        "type": record_type,
        "message": {"role": record_type, "content": content},
        "uuid": uuid,
        "sessionId": session_id,
    }
    if timestamp is not None:
        record["timestamp"] = timestamp
    return record


def write_jsonl(path: Path, records: list, mode: str = "w") -> Path:
    """Write records (dicts or raw strings) as JSONL lines."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, mode, encoding="utf-8") as f:
        for record in records:
            line = record if isinstance(record, str) else json.dumps(record)
            f.write(line + "\n")
    return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def scenario_a_lines():
    """The two-message conversation used across end-to-end tests."""
    return [
        '{"type":"user","message":{"role":"user","content":[{"type":"text","text":"Hello"}]},'
        '"uuid":"a1","timestamp":"2024-01-01T10:00:00Z","sessionId":"s-123"}',
        '{"type":"assistant","message":{"role":"assistant","content":[{"type":"text","text":"Hi there"}]},'
        '"uuid":"a2","timestamp":"2024-01-01T10:00:05Z","sessionId":"s-123"}',
    ]


@pytest.fixture
def source_root(temp_dir):
    root = temp_dir / "projects"
    root.mkdir()
    return root


@pytest.fixture
def output_root(temp_dir):
    return temp_dir / "exports"


@pytest.fixture
def config(source_root, output_root):
    from cc_backup.config import Config

    return Config(source_root=source_root, output_root=output_root, poll_interval=0.1)


@pytest.fixture
def engine(config):
    """Engine with a fixed clock so snapshots are reproducible."""
    from cc_backup.engine import CaptureEngine

    engine = CaptureEngine(config, clock=lambda: FIXED_NOW)
    yield engine
    engine.stop()


@pytest.fixture
def sample_session():
    """A parsed two-message session with reasoning on the reply."""
    from cc_backup.models import Message
    from cc_backup.parser import assemble_session

    messages = [
        Message(
            kind="user",
            role="user",
            content="How do I implement authentication?",
            timestamp=datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
            id="msg-001",
            session_id="test-session-123",
        ),
        Message(
            kind="assistant",
            role="assistant",
            content="For authentication, you can use JWT tokens...",
            reasoning="Let me think about a good example...",
            timestamp=datetime(2024, 1, 15, 10, 0, 5, tzinfo=timezone.utc),
            id="msg-002",
            session_id="test-session-123",
        ),
    ]
    return assemble_session(Path("/tmp/project/test-session.jsonl"), messages)


@pytest.fixture
def record():
    """Factory for JSONL records."""
    return make_record


@pytest.fixture
def jsonl():
    """Helper that writes records to a JSONL file."""
    return write_jsonl
