"""Continuous markdown/JSON backup of Claude Code session logs."""

__version__ = "0.1.0"
