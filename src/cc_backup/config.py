"""Configuration for cc-backup.

Settings are resolved in order: built-in defaults, the ``[backup]`` table of
a TOML config file, then ``CC_BACKUP_*`` environment variables.
"""

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from cc_backup.models import ExportFormat

# Claude Code sessions location
DEFAULT_SOURCE_ROOT = Path.home() / ".claude" / "projects"
DEFAULT_OUTPUT_ROOT = Path.home() / "claude-conversations"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "cc-backup" / "config.toml"
DEFAULT_POLL_INTERVAL = 5.0

LOG_FILE_SUFFIX = ".jsonl"
AGENT_FILE_PREFIX = "agent-"

FORMAT_ALIASES = {
    "markdown": ExportFormat.MARKDOWN,
    "md": ExportFormat.MARKDOWN,
    "text": ExportFormat.MARKDOWN,
    "json": ExportFormat.JSON,
    "snapshot": ExportFormat.JSON,
}


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


def _all_formats() -> frozenset[ExportFormat]:
    return frozenset(ExportFormat)


@dataclass(frozen=True)
class Config:
    """Effective settings for one engine."""

    source_root: Path = DEFAULT_SOURCE_ROOT
    output_root: Path = DEFAULT_OUTPUT_ROOT
    formats: frozenset[ExportFormat] = field(default_factory=_all_formats)
    auto_start: bool = True
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "source_root" in changes:
            changes["source_root"] = expand_path(changes["source_root"])
        if "output_root" in changes:
            changes["output_root"] = expand_path(changes["output_root"])
        if "formats" in changes:
            changes["formats"] = parse_formats(changes["formats"])
        if "poll_interval" in changes:
            changes["poll_interval"] = parse_poll_interval(changes["poll_interval"])
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_root": str(self.source_root),
            "output_root": str(self.output_root),
            "formats": sorted(f.value for f in self.formats),
            "auto_start": self.auto_start,
            "poll_interval": self.poll_interval,
        }


def expand_path(value: str | Path) -> Path:
    if not isinstance(value, (str, Path)):
        raise ConfigError(f"Expected a path string, got {value!r}")
    return Path(value).expanduser()


def parse_formats(value: str | list[str] | tuple[str, ...] | frozenset | set) -> frozenset[ExportFormat]:
    """Parse a comma-separated string or a list of format names."""
    if isinstance(value, str):
        names = [v.strip() for v in value.split(",")]
    elif isinstance(value, (list, tuple, set, frozenset)):
        names = [v.value if isinstance(v, ExportFormat) else str(v).strip() for v in value]
    else:
        raise ConfigError(f"Invalid export formats: {value!r}")

    formats = set()
    for name in names:
        if not name:
            continue
        fmt = FORMAT_ALIASES.get(name.lower())
        if fmt is None:
            raise ConfigError(f"Unknown export format: {name!r} (expected markdown or json)")
        formats.add(fmt)
    return frozenset(formats)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def parse_poll_interval(value: Any) -> float:
    try:
        interval = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid poll interval: {value!r}") from e
    if interval <= 0:
        raise ConfigError(f"Poll interval must be positive, got {interval}")
    return interval


def config_file_path() -> Path:
    env_path = os.getenv("CC_BACKUP_CONFIG")
    return expand_path(env_path) if env_path else DEFAULT_CONFIG_PATH


def read_config_file(path: Path) -> dict[str, Any]:
    """Read the [backup] table from a TOML file; a missing file yields {}."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    section = data.get("backup", {})
    if not isinstance(section, dict):
        raise ConfigError(f"[backup] in {path} must be a table")
    return section


def _env_settings() -> dict[str, Any]:
    settings: dict[str, Any] = {}
    env_map = {
        "CC_BACKUP_SOURCE": "source_root",
        "CC_BACKUP_OUTPUT": "output_root",
        "CC_BACKUP_FORMATS": "formats",
        "CC_BACKUP_AUTO_START": "auto_start",
        "CC_BACKUP_POLL_INTERVAL": "poll_interval",
    }
    for env_name, key in env_map.items():
        value = os.getenv(env_name)
        if value is not None and value.strip():
            settings[key] = value
    return settings


def load_config(path: Path | None = None) -> Config:
    """Resolve the effective configuration."""
    settings = read_config_file(path or config_file_path())
    settings.update(_env_settings())

    unknown = set(settings) - {"source_root", "output_root", "formats", "auto_start", "poll_interval"}
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    if "auto_start" in settings:
        settings["auto_start"] = parse_bool(settings["auto_start"])
    return Config().with_overrides(**settings)
