"""Persistent PTY sessions — spawning, buffering, attach/detach.

Each external tool runs in its own pseudo-terminal owned by a ``Session``.
The ``SessionRegistry`` keeps at most one live session per tool, and the
``AttachController`` hands the user's terminal to one session at a time.
"""

from aic.pty.attach import AttachController, AttachResult, DetachReason
from aic.pty.buffer import OutputBuffer
from aic.pty.inject import PacedInjector
from aic.pty.ready import ReadyDetector
from aic.pty.registry import SessionRegistry
from aic.pty.session import Session, SessionState
from aic.pty.terminal import Terminal
from aic.pty.triggers import DETACH_TRIGGERS, DetachClassifier, DetachTrigger

__all__ = [
    "AttachController",
    "AttachResult",
    "DetachReason",
    "OutputBuffer",
    "PacedInjector",
    "ReadyDetector",
    "SessionRegistry",
    "Session",
    "SessionState",
    "Terminal",
    "DETACH_TRIGGERS",
    "DetachClassifier",
    "DetachTrigger",
]
