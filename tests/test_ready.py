"""Tests for aic.pty.ready.ReadyDetector."""

from __future__ import annotations

import re

from aic.pty.ready import ReadyDetector


class TestReadyDetector:
    def test_match_in_single_chunk(self) -> None:
        detector = ReadyDetector(r"Type your message")
        assert detector.feed("Welcome!\nType your message\n") is True
        assert detector.fired

    def test_no_match(self) -> None:
        detector = ReadyDetector(r"Type your message")
        assert detector.feed("Loading...\n") is False
        assert not detector.fired

    def test_match_split_across_chunks(self) -> None:
        detector = ReadyDetector(r"Type your message")
        assert detector.feed("Type your mes") is False
        assert detector.feed("sage") is True

    def test_match_wrapped_in_color(self) -> None:
        detector = ReadyDetector(r"Type your message")
        assert detector.feed("\x1b[1mType\x1b[0m \x1b[2myour message\x1b[0m") is True

    def test_escape_split_at_chunk_boundary(self) -> None:
        detector = ReadyDetector(r"Type your message")
        assert detector.feed("Type \x1b[3") is False
        assert detector.feed("2myour message") is True

    def test_complete_trailing_escape_is_not_held_back(self) -> None:
        detector = ReadyDetector(r"> $")
        assert detector.feed("starting...\n> \x1b[0m") is True

    def test_compiled_pattern(self) -> None:
        detector = ReadyDetector(re.compile(r"\? for shortcuts"))
        assert detector.feed("  ? for shortcuts") is True

    def test_one_shot(self) -> None:
        calls: list[int] = []
        detector = ReadyDetector(r"> ", on_ready=lambda: calls.append(1))
        assert detector.feed("> ") is True
        assert detector.feed("> ") is False
        assert detector.feed("> ") is False
        assert calls == [1]

    def test_no_pattern_fires_on_first_output(self) -> None:
        calls: list[int] = []
        detector = ReadyDetector(None, on_ready=lambda: calls.append(1))
        assert detector.feed("anything") is True
        assert detector.feed("more") is False
        assert calls == [1]

    def test_window_bounds_memory(self) -> None:
        detector = ReadyDetector(r"READY", window=16)
        for _ in range(100):
            detector.feed("x" * 50)
        assert len(detector._tail) <= 16
        assert detector.feed("READY") is True
