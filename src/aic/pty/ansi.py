"""Terminal control sequences — exact-match recognizers and mode toggles.

This is a forwarding/filtering layer, not a terminal emulator: only the
handful of sequences listed here are recognized, everything else passes
through untouched.
"""

from __future__ import annotations

import re

ESC = b"\x1b"

# Focus reports (sent by the outer terminal when DECSET 1004 is on)
FOCUS_IN = b"\x1b[I"
FOCUS_OUT = b"\x1b[O"

# Replies to capability queries the subprocess sends through us.
#   DA1:   ESC [ ? 1 ; 2 c          DA2:  ESC [ > 1 ; 10 ; 0 c
#   CPR:   ESC [ 12 ; 40 R          kitty keyboard ack: ESC [ ? 1 u
_DA1_RE = re.compile(rb"\x1b\[\?[0-9;]*c")
_DA2_RE = re.compile(rb"\x1b\[>[0-9;]*c")
_CPR_RE = re.compile(rb"\x1b\[[0-9]+;[0-9]+R")
_KEYBOARD_ACK_RE = re.compile(rb"\x1b\[\?[0-9]*u")

TERMINAL_RESPONSE_PATTERNS: tuple[re.Pattern[bytes], ...] = (
    _DA1_RE,
    _DA2_RE,
    _CPR_RE,
    _KEYBOARD_ACK_RE,
)

# Mode toggles
CLEAR_LINE = "\r\x1b[2K"
CLEAR_SCREEN = "\x1b[2J\x1b[H"
FOCUS_REPORTING_ON = "\x1b[?1004h"
FOCUS_REPORTING_OFF = "\x1b[?1004l"
BRACKETED_PASTE_ON = "\x1b[?2004h"
BRACKETED_PASTE_OFF = "\x1b[?2004l"
KEYBOARD_ENHANCEMENT_RESET = "\x1b[<u"
CURSOR_SHOW = "\x1b[?25h"
CURSOR_HIDE = "\x1b[?25l"
PASTE_START = "\x1b[200~"
PASTE_END = "\x1b[201~"

# Emitted on every detach, in this order, before leaving raw mode.
RESTORE_SEQUENCE: tuple[str, ...] = (
    CLEAR_LINE,
    FOCUS_REPORTING_OFF,
    BRACKETED_PASTE_OFF,
    KEYBOARD_ENHANCEMENT_RESET,
    CURSOR_SHOW,
)

_FOCUS_TEXT_RE = re.compile(r"\x1b\[[IO]")

# CSI (incl. private params), OSC (BEL or ST terminated), and two-byte escapes
_ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)


def strip_focus_reports(data: bytes) -> bytes:
    """Remove focus-in/focus-out reports from raw input."""
    return data.replace(FOCUS_IN, b"").replace(FOCUS_OUT, b"")


def strip_terminal_responses(data: bytes) -> bytes:
    """Remove DA, cursor-position and keyboard-protocol replies from raw input."""
    for pattern in TERMINAL_RESPONSE_PATTERNS:
        data = pattern.sub(b"", data)
    return data


def filter_input_noise(data: bytes) -> bytes:
    """Apply the full input noise filter (focus reports, then terminal responses)."""
    return strip_terminal_responses(strip_focus_reports(data))


def strip_focus_text(text: str) -> str:
    """Remove focus-report sequences from decoded output text (used for replay)."""
    return _FOCUS_TEXT_RE.sub("", text)


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)
