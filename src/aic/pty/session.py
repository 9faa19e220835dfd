"""PTY session — one persistent tool subprocess and its terminal stream."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
import time
from dataclasses import dataclass, field
from typing import Callable

from aic.errors import InvalidTransitionError, SpawnError
from aic.pty.buffer import OutputBuffer
from aic.pty.ready import ReadyDetector
from aic.session.wire import Wire

logger = logging.getLogger(__name__)

READ_SIZE = 65536


class SessionState(enum.Enum):
    """Lifecycle states for a tool session.

    PROCESSING is never stored; ``Session.reported_state()`` derives it
    from recent output for status displays.
    """

    SPAWNING = "spawning"
    READY = "ready"
    ATTACHED = "attached"
    DETACHED = "detached"
    PROCESSING = "processing"
    DEAD = "dead"


_ATTACHABLE = (SessionState.SPAWNING, SessionState.READY, SessionState.DETACHED)
_ACTIVE = (SessionState.READY, SessionState.ATTACHED, SessionState.DETACHED)

ExitListener = Callable[["Session", "int | None"], None]


def set_winsize(fd: int, cols: int, rows: int) -> None:
    """Set the window size of a terminal fd."""
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(): make the PTY slave (fd 0) its
    # controlling terminal so job control and SIGWINCH work.
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


@dataclass
class Session:
    """A persistent tool subprocess running on its own pseudo-terminal.

    The session owns the child process, the PTY master fd and the output
    buffer. Output is read with ``loop.add_reader`` on the master fd, so
    everything runs on the event loop thread: every chunk is appended to
    the buffer, fed to the ready detector and, while attached, passed to
    the output sink (the user's terminal).

    State changes are published on the wire (if one is set). Exit
    listeners fire exactly once, from any state, when the process is gone,
    whether it exited on its own or was killed.
    """

    tool_id: str
    command: list[str] = field(default_factory=list)
    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    ready_pattern: str | None = None
    idle_timeout: float = 2.0
    term: str = "xterm-256color"
    cols: int = 80
    rows: int = 24
    kill_grace: float = 2.0
    buffer: OutputBuffer = field(default_factory=OutputBuffer)
    wire: Wire | None = None

    last_output_at: float | None = field(default=None, init=False)
    ready: bool = field(default=False, init=False)

    _state: SessionState = field(default=SessionState.SPAWNING, init=False)
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pgid: int = field(default=0, init=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _detector: ReadyDetector | None = field(default=None, init=False)
    # Set once startup is settled: ready, or dead before ready
    _settled: asyncio.Event | None = field(default=None, init=False)
    _exited: asyncio.Event | None = field(default=None, init=False)
    _exit_code: int | None = field(default=None, init=False)
    _exit_listeners: list[ExitListener] = field(default_factory=list, init=False)
    _output_sink: Callable[[str], None] | None = field(default=None, init=False)
    _pending: bytearray = field(default_factory=bytearray, init=False)

    def __post_init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    # ------------------------------------------------------------------
    # Spawning and output
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the process in a new PTY with its own process group.

        Raises:
            SpawnError: the process could not be launched.
        """
        if self._proc is not None:
            raise InvalidTransitionError(self.tool_id, self._state.value, "spawning")

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(self.tool_id, f"no PTY available: {e}", cause=e) from e
        try:
            set_winsize(slave_fd, self.cols, self.rows)
        except OSError as e:
            logger.debug("Could not size PTY for %s: %s", self.tool_id, e)

        env = {**os.environ, **self.env}
        env["TERM"] = self.term

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,  # Creates new process group
                preexec_fn=_acquire_controlling_tty,
                env=env,
                cwd=self.cwd,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(self.tool_id, str(e), cause=e) from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        # Writes must never stall the event loop; see write()
        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)
        self._master_fd = master_fd
        self._pgid = os.getpgid(self._proc.pid)
        self._loop = asyncio.get_running_loop()
        self._exited = asyncio.Event()
        self._detector = ReadyDetector(self.ready_pattern, on_ready=self.mark_ready)
        self._loop.add_reader(self._master_fd, self._on_readable)

        logger.info(
            "Session %s started: pid=%d pgid=%d cmd=%s",
            self.tool_id,
            self._proc.pid,
            self._pgid,
            " ".join(self.command),
        )

        if self.ready_pattern is None:
            self.mark_ready()

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO once the slave side is closed (Linux)
            data = b""
        if not data:
            self._on_eof()
            return
        self.feed_output(self._decoder.decode(data))

    def feed_output(self, text: str) -> None:
        """Record a chunk of decoded process output."""
        if not text or self._state == SessionState.DEAD:
            return
        self.buffer.append(text)
        self.last_output_at = time.monotonic()
        if self._detector is not None:
            self._detector.feed(text)
        if self._output_sink is not None:
            self._output_sink(text)

    def _on_eof(self) -> None:
        self._stop_reading()
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self.feed_output(tail)
        code = self._proc.poll() if self._proc else None
        if code is not None or self._proc is None or self._loop is None:
            self._finish(code)
        else:
            self._loop.create_task(self._reap())

    async def _reap(self) -> None:
        loop = asyncio.get_running_loop()
        code = await loop.run_in_executor(None, self._wait_proc, None)
        self._finish(code)

    def _wait_proc(self, timeout: float | None) -> int | None:
        if self._proc is None:
            return None
        try:
            return self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def _stop_reading(self) -> None:
        if self._loop is not None and self._master_fd >= 0:
            try:
                self._loop.remove_reader(self._master_fd)
            except (ValueError, RuntimeError):
                pass

    def _finish(self, exit_code: int | None) -> None:
        """Transition to DEAD, release the fd and fire exit listeners once."""
        if self._state == SessionState.DEAD:
            return
        self._exit_code = exit_code
        self._stop_reading()
        self._stop_writing()
        self._pending.clear()
        if self._master_fd >= 0:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = -1
        self._output_sink = None
        self._set_state(SessionState.DEAD)
        logger.info("Session %s exited (code=%s)", self.tool_id, exit_code)

        if self._settled is not None:
            self._settled.set()
        if self._exited is not None:
            self._exited.set()

        listeners, self._exit_listeners = self._exit_listeners, []
        for listener in listeners:
            try:
                listener(self, exit_code)
            except Exception:
                logger.exception("Error in exit listener for session %s", self.tool_id)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _set_state(self, new: SessionState) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        logger.debug("Session %s: %s -> %s", self.tool_id, old.value, new.value)
        if self.wire is not None:
            self.wire.send_state(self.tool_id, old.value, new.value)

    def mark_ready(self) -> None:
        """Record that the tool reached its interactive prompt."""
        if self.ready or self._state == SessionState.DEAD:
            return
        self.ready = True
        if self._state == SessionState.SPAWNING:
            self._set_state(SessionState.READY)
        if self._settled is not None:
            self._settled.set()
        if self.wire is not None:
            self.wire.send_ready(self.tool_id)

    async def wait_ready(self, timeout: float | None = None) -> None:
        """Wait until the ready pattern has matched.

        Raises:
            SpawnError: the process exited first.
            asyncio.TimeoutError: ``timeout`` elapsed.
        """
        if self.ready:
            return
        if self._state == SessionState.DEAD:
            raise SpawnError(self.tool_id, f"exited before ready (code={self._exit_code})")
        if self._settled is None:
            self._settled = asyncio.Event()
        # Each waiter has its own deadline; one timing out leaves the rest waiting
        await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        if not self.ready:
            raise SpawnError(self.tool_id, f"exited before ready (code={self._exit_code})")

    def attach(self, output_sink: Callable[[str], None] | None = None) -> bool:
        """Move to ATTACHED. Returns True if this is a reattachment.

        Exclusivity across sessions is enforced by the registry.
        """
        if self._state not in _ATTACHABLE:
            raise InvalidTransitionError(self.tool_id, self._state.value, "attached")
        reattach = self._state == SessionState.DETACHED
        self._output_sink = output_sink
        self._set_state(SessionState.ATTACHED)
        return reattach

    def detach(self) -> bool:
        """Move ATTACHED -> DETACHED. Returns False if not attached."""
        if self._state != SessionState.ATTACHED:
            return False
        self._output_sink = None
        self._set_state(SessionState.DETACHED)
        return True

    def reported_state(self, now: float | None = None) -> SessionState:
        """State for status displays, with the PROCESSING overlay applied."""
        if self._state in _ACTIVE and self.last_output_at is not None:
            now = time.monotonic() if now is None else now
            if now - self.last_output_at < self.idle_timeout:
                return SessionState.PROCESSING
        return self._state

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def write(self, data: bytes | str) -> bool:
        """Write input to the process without blocking the event loop.

        The master fd is non-blocking. Whatever the PTY does not accept
        right away (a tool in raw mode that is busy and not reading) is
        queued in order and flushed by a writer callback as the tool
        drains its input. Discarded (returns False) once dead.
        """
        if self._state == SessionState.DEAD or self._master_fd < 0:
            logger.debug("Discarding write to dead session %s", self.tool_id)
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")
        if self._pending:
            self._pending += data
            return True
        try:
            written = os.write(self._master_fd, data)
        except BlockingIOError:
            written = 0
        except OSError as e:
            self._drop_input(e)
            return False
        if written < len(data):
            self._pending += data[written:]
            assert self._loop is not None
            self._loop.add_writer(self._master_fd, self._on_writable)
            logger.debug("Session %s: queued %d input bytes", self.tool_id, len(self._pending))
        return True

    def _on_writable(self) -> None:
        try:
            written = os.write(self._master_fd, self._pending)
        except BlockingIOError:
            return
        except OSError as e:
            self._drop_input(e)
            return
        del self._pending[:written]
        if not self._pending:
            self._stop_writing()

    def _drop_input(self, error: OSError) -> None:
        logger.warning(
            "Input to session %s dropped (%d queued bytes): %s",
            self.tool_id,
            len(self._pending),
            error,
        )
        self._stop_writing()
        self._pending.clear()
        if self.wire is not None:
            self.wire.send_error(f"Input to {self.tool_id} was not delivered: {error}")

    def _stop_writing(self) -> None:
        if self._loop is not None and self._master_fd >= 0:
            try:
                self._loop.remove_writer(self._master_fd)
            except (ValueError, RuntimeError):
                pass

    @property
    def pending_input(self) -> int:
        """Input bytes queued while the tool is not reading."""
        return len(self._pending)

    def resize(self, cols: int, rows: int) -> None:
        """Propagate a terminal size change to the PTY."""
        self.cols, self.rows = cols, rows
        if self._state == SessionState.DEAD or self._master_fd < 0:
            return
        try:
            set_winsize(self._master_fd, cols, rows)
        except OSError as e:
            logger.debug("Resize of session %s failed: %s", self.tool_id, e)

    def add_exit_listener(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)

    def remove_exit_listener(self, listener: ExitListener) -> None:
        if listener in self._exit_listeners:
            self._exit_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def kill(self) -> None:
        """Terminate the whole process group and release the PTY.

        Sends SIGHUP and SIGTERM, escalates to SIGKILL after
        ``kill_grace`` seconds. Exit listeners fire as for any other exit.
        """
        if self._state == SessionState.DEAD:
            return
        self._stop_reading()

        if self._proc is not None and self._proc.poll() is None:
            for sig in (signal.SIGHUP, signal.SIGTERM):
                try:
                    os.killpg(self._pgid, sig)
                except ProcessLookupError:
                    logger.debug("Process group already gone: %d", self._pgid)
                    break
                except OSError as e:
                    logger.warning("Error signalling session %s: %s", self.tool_id, e)
            if self._wait_proc(self.kill_grace) is None:
                try:
                    os.killpg(self._pgid, signal.SIGKILL)
                    logger.info("Killed session %s (pgid=%d)", self.tool_id, self._pgid)
                except ProcessLookupError:
                    pass
                # Reap to avoid zombies
                self._wait_proc(self.kill_grace)

        self._finish(self._proc.poll() if self._proc is not None else None)

    async def wait_for_exit(self, timeout: float | None = None) -> int | None:
        """Wait for the process to exit. Returns the exit code.

        Raises:
            asyncio.TimeoutError: ``timeout`` elapsed first.
        """
        if self._state == SessionState.DEAD:
            return self._exit_code
        if self._exited is None:
            self._exited = asyncio.Event()
        await asyncio.wait_for(self._exited.wait(), timeout=timeout)
        return self._exit_code

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def attached(self) -> bool:
        return self._state == SessionState.ATTACHED

    @property
    def alive(self) -> bool:
        return self._state != SessionState.DEAD

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    def __del__(self) -> None:
        """Ensure the child does not outlive an unreferenced session."""
        proc = getattr(self, "_proc", None)
        if proc is not None and proc.poll() is None:
            try:
                os.killpg(self._pgid, signal.SIGKILL)
            except OSError:
                pass
