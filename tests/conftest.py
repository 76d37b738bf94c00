"""Pytest configuration for the `tests/` suite.

Adds the repository root to `sys.path` so the suite runs from a plain
checkout as well as from an editable install, and provides the shared
fixtures used by the recovery tests.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_REPO_ROOT = Path(__file__).resolve().parents[1]

if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from pkgrecovery.recovery.repository import PatternRepository  # noqa: E402
from pkgrecovery.recovery.risk import ConfirmationPrompt  # noqa: E402
from pkgrecovery.utils.commands import CommandResult  # noqa: E402


class RecordingRunner:
    """Command runner double that records argv lists and replays results."""

    def __init__(self, results=None, default=None):
        self.calls: list[list[str]] = []
        self.results = dict(results or {})
        self.default = default or CommandResult(True, "", "", 0)

    def __call__(self, args):
        argv = list(args)
        self.calls.append(argv)
        for key, result in self.results.items():
            if tuple(argv[: len(key)]) == key:
                return result
        return self.default


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(True, stdout, "", 0)


def fail(code: int = 1, stderr: str = "boom") -> CommandResult:
    return CommandResult(False, "", stderr, code)


@pytest.fixture(scope="session")
def repository():
    """The bundled rule set."""
    return PatternRepository.load_default()


@pytest.fixture
def runner():
    return RecordingRunner()


class ScriptedPrompt(ConfirmationPrompt):
    """Confirmation double with canned answers."""

    def __init__(self, confirm=False, text="", error=None):
        self.answer = confirm
        self.text = text
        self.error = error
        self.asked: list[tuple[str, str]] = []

    def confirm(self, message):
        self.asked.append(("confirm", message))
        if self.error:
            raise self.error
        return self.answer

    def ask_text(self, message):
        self.asked.append(("text", message))
        if self.error:
            raise self.error
        return self.text
