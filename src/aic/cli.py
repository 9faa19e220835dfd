"""CLI entry point for aic."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import typer

from aic import __version__
from aic.config import AicConfig

if TYPE_CHECKING:
    from aic.history import ConversationHistory

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="aic",
    help="Run AI coding CLIs side by side in persistent terminal sessions.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure logging.

    Interactive sessions own the terminal, so without ``log_file`` only
    warnings reach stderr unless ``verbose`` is set.
    """
    level = logging.DEBUG if verbose else logging.INFO
    if log_file is None and not verbose:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        filename=os.path.expanduser(log_file) if log_file else None,
    )


@app.command()
def start(
    tool: str | None = typer.Option(
        None, "--tool", "-t", help="Tool active at startup (default: from env/config)."
    ),
    cwd: str | None = typer.Option(
        None, "--cwd", "-C", help="Working directory for tool processes."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    log_file: str | None = typer.Option(
        None, "--log-file", help="Write logs to this file instead of stderr."
    ),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
    resume_transcript: str | None = typer.Option(
        None,
        "--resume-transcript",
        help="Reload history from a JSONL transcript and keep appending to it.",
    ),
) -> None:
    """Start the aic command loop."""
    setup_logging(verbose, log_file)

    config = AicConfig.load(config_file)
    if tool:
        config.default_tool = tool.lower()

    workdir = os.path.abspath(cwd or os.getcwd())
    if not os.path.isdir(workdir):
        typer.echo(f"Error: Directory not found: {workdir}", err=True)
        raise typer.Exit(1)

    if resume_transcript and not Path(resume_transcript).expanduser().is_file():
        typer.echo(f"Error: Transcript not found: {resume_transcript}", err=True)
        raise typer.Exit(1)

    try:
        asyncio.run(_run(config, workdir, resume_transcript))
    except KeyboardInterrupt:
        typer.echo("\nGoodbye!")


@app.command()
def version() -> None:
    """Print the aic version."""
    typer.echo(f"aic v{__version__}")


async def open_history(config: AicConfig, resume: str | None = None) -> ConversationHistory:
    """Resume a transcript if given, else start a fresh (optionally persisted) history."""
    from aic.history import ConversationHistory

    min_chars = config.history.min_capture_chars
    if resume:
        history = await ConversationHistory.restore(Path(resume), min_capture_chars=min_chars)
        logger.info("Resumed %d messages from %s", len(history), history.path)
        return history

    transcript: Path | None = None
    if config.history.persist:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        transcript = Path(config.history.transcript_dir).expanduser() / f"{stamp}.jsonl"
    return ConversationHistory(path=transcript, min_capture_chars=min_chars)


async def _run(config: AicConfig, cwd: str, resume: str | None = None) -> None:
    from aic.adapters.registry import AdapterRegistry
    from aic.loop import CommandLoop
    from aic.pty.attach import AttachController
    from aic.pty.registry import SessionRegistry
    from aic.session.wire import Wire
    from aic.ui import UI

    wire = Wire()
    adapters = AdapterRegistry.from_config(config)
    if config.default_tool not in adapters:
        typer.echo(f"Error: Unknown tool: {config.default_tool}", err=True)
        raise typer.Exit(1)

    registry = SessionRegistry(adapters, config=config.session, wire=wire, cwd=cwd)
    controller = AttachController(
        registry,
        wire=wire,
        escape_window=config.attach.escape_window,
        replay_on_reattach=config.attach.replay_on_reattach,
    )
    history = await open_history(config, resume)

    loop = CommandLoop(
        config=config,
        adapters=adapters,
        registry=registry,
        controller=controller,
        history=history,
        ui=UI(),
        wire=wire,
        cwd=cwd,
    )
    await loop.run()
