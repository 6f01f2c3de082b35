"""CLI for cc-backup."""

import logging
import sys
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from cc_backup import __version__
from cc_backup.config import Config, ConfigError, load_config

app = typer.Typer(
    name="cc-backup",
    help="Back up Claude Code sessions as markdown and JSON, continuously.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

CONTROL_HELP = "Commands: start, stop, status, open, reload, quit"

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Config file (default: ~/.config/cc-backup/config.toml)")
]
SourceOption = Annotated[
    Path | None, typer.Option("--source", "-s", help="Claude projects directory to read")
]
OutputOption = Annotated[
    Path | None, typer.Option("--output", "-o", help="Directory to write exports to")
]
FormatOption = Annotated[
    list[str] | None,
    typer.Option("--format", "-f", help="Export format: markdown or json (can repeat)"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", help="Debug logging")]


def version_callback(value: bool) -> None:
    if value:
        console.print(f"cc-backup {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool = False) -> None:
    """Send cc_backup log records to stderr through rich."""
    logger = logging.getLogger("cc_backup")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=err_console, show_path=False, markup=False))
    logger.propagate = False


def resolve_config(config_path: Path | None, **overrides) -> Config:
    """Load the configuration and apply command-line overrides."""
    try:
        return load_config(config_path).with_overrides(**overrides)
    except ConfigError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(2) from e


def open_folder(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    typer.launch(str(path))


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """Back up Claude Code sessions."""
    pass


@app.command()
def watch(
    config_path: ConfigOption = None,
    source: SourceOption = None,
    output: OutputOption = None,
    formats: FormatOption = None,
    poll_interval: Annotated[
        float | None, typer.Option("--poll-interval", help="Seconds between full rescans")
    ] = None,
    no_auto_start: Annotated[
        bool, typer.Option("--no-auto-start", help="Wait for a start command before capturing")
    ] = False,
    interactive: Annotated[
        bool | None,
        typer.Option(
            "--interactive/--no-interactive",
            help="Read control commands from stdin (default: only when stdin is a terminal)",
        ),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """Watch session logs and keep exports up to date."""
    from cc_backup.engine import CaptureEngine

    setup_logging(verbose)
    overrides = {
        "source_root": source,
        "output_root": output,
        "formats": formats or None,
        "poll_interval": poll_interval,
        "auto_start": False if no_auto_start else None,
    }
    config = resolve_config(config_path, **overrides)

    # One engine for the whole process; every command below goes through it
    engine = CaptureEngine(config)
    if config.auto_start:
        start_engine(engine)

    try:
        if resolve_interactive(interactive):
            console.print(CONTROL_HELP)
            for line in sys.stdin:
                if not handle_command(line.strip().lower(), engine, config_path, overrides):
                    break
        else:
            threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()


def resolve_interactive(flag: bool | None) -> bool:
    """Read commands from stdin only when asked to, or when it is a terminal."""
    if flag is not None:
        return flag
    return sys.stdin is not None and sys.stdin.isatty()


def start_engine(engine) -> None:
    if engine.start():
        console.print(f"[green]Watching {engine.config.source_root}[/green]")
    else:
        console.print(
            f"[yellow]Claude projects directory not found: {engine.config.source_root}[/yellow]"
        )


def handle_command(command: str, engine, config_path: Path | None, overrides: dict) -> bool:
    """Run one control command. Returns False when the loop should end."""
    if not command:
        return True
    if command in ("quit", "exit", "q"):
        return False

    if command == "start":
        start_engine(engine)
    elif command == "stop":
        engine.stop()
        console.print("[yellow]Watching stopped[/yellow]")
    elif command == "status":
        for key, value in engine.status().items():
            console.print(f"{key}: {value}")
    elif command == "open":
        open_folder(engine.config.output_root)
    elif command == "reload":
        try:
            new_config = load_config(config_path).with_overrides(**overrides)
        except ConfigError as e:
            console.print(f"[red]Error: {e}[/red]")
        else:
            engine.update_config(new_config)
            console.print("[green]Configuration updated[/green]")
    else:
        console.print(f"[red]Unknown command: {command}[/red]")
        console.print(CONTROL_HELP)
    return True


@app.command()
def export(
    config_path: ConfigOption = None,
    source: SourceOption = None,
    output: OutputOption = None,
    formats: FormatOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Export every session once and exit."""
    from cc_backup.engine import CaptureEngine

    setup_logging(verbose)
    config = resolve_config(
        config_path, source_root=source, output_root=output, formats=formats or None
    )

    if not config.source_root.is_dir():
        err_console.print(f"[red]Claude projects directory not found: {config.source_root}[/red]")
        raise typer.Exit(1)

    config.output_root.mkdir(parents=True, exist_ok=True)
    engine = CaptureEngine(config)
    exported = engine.scan()
    console.print(f"[green]Exported {exported} sessions to {config.output_root}[/green]")
    if engine.errors:
        console.print(f"[yellow]{engine.errors} files failed, see log above[/yellow]")


@app.command()
def index(
    config_path: ConfigOption = None,
    output: OutputOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Rebuild _index.md for every exported project."""
    from cc_backup.index import rebuild_all

    setup_logging(verbose)
    config = resolve_config(config_path, output_root=output)
    rebuilt = rebuild_all(config.output_root)
    console.print(f"Rebuilt {len(rebuilt)} project indexes")


@app.command("open")
def open_command(
    config_path: ConfigOption = None,
    output: OutputOption = None,
) -> None:
    """Open the export folder in the file browser."""
    config = resolve_config(config_path, output_root=output)
    open_folder(config.output_root)


@app.command("config")
def show_config(
    config_path: ConfigOption = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show the effective configuration."""
    config = resolve_config(config_path)
    if json_output:
        console.print_json(data=config.to_dict())
    else:
        for key, value in config.to_dict().items():
            console.print(f"{key}: {value}")


if __name__ == "__main__":
    app()
