"""Print mode — one-shot, non-interactive requests to a tool."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass

from aic.adapters.base import ToolAdapter
from aic.errors import SpawnError, ToolRunError

logger = logging.getLogger(__name__)


@dataclass
class PrintResult:
    tool: str
    raw: str  # stdout as produced (may contain markdown/ANSI)
    text: str  # cleaned by the adapter


async def run_print(
    adapter: ToolAdapter,
    message: str,
    cwd: str | None = None,
    has_history: bool = False,
    timeout: float | None = None,
) -> PrintResult:
    """Run ``adapter`` once with ``message`` and collect its reply.

    Raises:
        SpawnError: the command could not be launched.
        ToolRunError: non-zero exit status.
        asyncio.TimeoutError: ``timeout`` elapsed (the process group is killed).
    """
    argv = [adapter.command, *adapter.print_args(message, has_history)]
    logger.debug("Print-mode run: %s", argv[:-1])
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd or os.getcwd(),
            start_new_session=True,
            env={**os.environ, **adapter.env},
        )
    except OSError as e:
        raise SpawnError(adapter.name, str(e), cause=e) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        # Kill the entire process group
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await process.wait()
        raise

    out = stdout.decode("utf-8", errors="replace") if stdout else ""
    err = stderr.decode("utf-8", errors="replace") if stderr else ""
    if process.returncode != 0:
        raise ToolRunError(adapter.name, process.returncode, err or out)

    return PrintResult(tool=adapter.name, raw=out.strip(), text=adapter.clean_response(out))
