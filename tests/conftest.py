from __future__ import annotations

import pytest

from fakes import FakeTerminal


@pytest.fixture
def terminal():
    term = FakeTerminal()
    yield term
    term.close()
