"""Detach triggers — a declarative table and the classifier that applies it.

Every chunk of raw keyboard input read while a session is attached goes
through ``DetachClassifier.classify()``:

1. terminal noise (focus reports, DA/CPR replies, keyboard-protocol acks)
   is stripped; an empty remainder is dropped;
2. the ``DETACH_TRIGGERS`` table is evaluated in order, first match wins
   and the whole chunk is discarded;
3. anything else is forwarded verbatim.

Supporting a new terminal emulator means adding patterns to the table.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from aic.pty.ansi import filter_input_noise

logger = logging.getLogger(__name__)

DEFAULT_ESCAPE_WINDOW = 0.5


class TriggerKind(enum.Enum):
    SEQUENCE = "sequence"  # a fixed multi-byte sequence anywhere in the chunk
    BYTE = "byte"  # a single control byte anywhere in the chunk
    ADJACENT = "adjacent"  # a doubled key inside one chunk
    TIMED = "timed"  # a chunk that is exactly one key, twice within the window


@dataclass(frozen=True)
class DetachTrigger:
    name: str
    kind: TriggerKind
    patterns: tuple[bytes, ...]


class InputAction(enum.Enum):
    FORWARD = "forward"
    DROP = "drop"
    DETACH = "detach"


@dataclass(frozen=True)
class InputDecision:
    action: InputAction
    data: bytes = b""
    trigger: str | None = None


# Detach chords by key codepoint: Ctrl+] Ctrl+\ Ctrl+^ Ctrl+6 Ctrl+_ Ctrl+-
_CHORD_KEYS = (93, 92, 94, 54, 95, 45)
# Shifted keys as reported with kitty's alternate-key flag (base:shifted)
_SHIFTED_KEYS = ((54, 94), (45, 95))
# 5 = Ctrl, 6 = Ctrl+Shift
_CHORD_MODIFIERS = (5, 6)


def _chord_sequences() -> tuple[bytes, ...]:
    seqs: list[bytes] = []
    for mod in _CHORD_MODIFIERS:
        for key in _CHORD_KEYS:
            seqs.append(f"\x1b[{key};{mod}u".encode())
            seqs.append(f"\x1b[{key};{mod}:1u".encode())  # with press event type
            seqs.append(f"\x1b[27;{mod};{key}~".encode())  # xterm modifyOtherKeys
        for base, shifted in _SHIFTED_KEYS:
            seqs.append(f"\x1b[{base}:{shifted};{mod}u".encode())
    return tuple(seqs)


# Escape itself, as sent by terminals with the kitty disambiguate flag on
_CSI_U_ESCAPE = b"\x1b[27u"

DETACH_TRIGGERS: tuple[DetachTrigger, ...] = (
    DetachTrigger("csi-u chord", TriggerKind.SEQUENCE, _chord_sequences()),
    DetachTrigger("control byte", TriggerKind.BYTE, (b"\x1d", b"\x1c", b"\x1e", b"\x1f")),
    DetachTrigger(
        "double escape", TriggerKind.ADJACENT, (b"\x1b\x1b", _CSI_U_ESCAPE * 2)
    ),
    DetachTrigger("timed escape", TriggerKind.TIMED, (b"\x1b", _CSI_U_ESCAPE)),
)


class DetachClassifier:
    """Classifies raw input chunks as forward / drop / detach.

    Holds the only cross-chunk state: when the last lone Escape arrived.
    The timer restarts after a match, after a timeout, and whenever other
    input is forwarded, so "Esc, a, Esc" never detaches.
    """

    def __init__(
        self,
        triggers: tuple[DetachTrigger, ...] = DETACH_TRIGGERS,
        escape_window: float = DEFAULT_ESCAPE_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.triggers = triggers
        self.escape_window = escape_window
        self._clock = clock
        self._last_single: float | None = None

    def classify(self, chunk: bytes) -> InputDecision:
        data = filter_input_noise(chunk)
        if not data:
            return InputDecision(InputAction.DROP)

        for trigger in self.triggers:
            if self._matches(trigger, data):
                logger.debug("Detach trigger matched: %s", trigger.name)
                self._last_single = None
                return InputDecision(InputAction.DETACH, trigger=trigger.name)

        self._last_single = self._clock() if self._is_timed_key(data) else None
        return InputDecision(InputAction.FORWARD, data=data)

    def _matches(self, trigger: DetachTrigger, data: bytes) -> bool:
        if trigger.kind is TriggerKind.TIMED:
            if data not in trigger.patterns or self._last_single is None:
                return False
            return self._clock() - self._last_single < self.escape_window
        return any(pattern in data for pattern in trigger.patterns)

    def _is_timed_key(self, data: bytes) -> bool:
        return any(
            t.kind is TriggerKind.TIMED and data in t.patterns for t in self.triggers
        )

    def reset(self) -> None:
        self._last_single = None
