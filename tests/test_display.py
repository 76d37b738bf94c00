"""Tests for strategy descriptions and analysis rendering."""

from conftest import RecordingRunner

from pkgrecovery.branding import console, print_header, print_status
from pkgrecovery.recovery.analyzer import analyze_error
from pkgrecovery.recovery.display import describe_strategy, display_analyses
from pkgrecovery.recovery.fixer import FixInterpreter
from pkgrecovery.recovery.models import (
    BuiltIn,
    CleanRetry,
    Custom,
    EnvironmentFix,
    ForceOverwrite,
)


def _interpreter(platform):
    return FixInterpreter(runner=RecordingRunner(), platform_hint=platform, is_root=False)


def test_builtin_description():
    lines = describe_strategy(BuiltIn("clear_locks"), {}, _interpreter("ubuntu"))
    assert lines == ["Run built-in fix 'clear_locks': Remove stale package-manager lock files"]


def test_unknown_builtin_and_custom_are_flagged():
    interpreter = _interpreter("ubuntu")
    assert "not implemented" in describe_strategy(BuiltIn("nope"), {}, interpreter)[0]
    assert "not implemented" in describe_strategy(Custom("hook"), {}, interpreter)[0]


def test_clean_retry_lists_commands_and_retry():
    strategy = CleanRetry((("rm", "-rf", "~/.cache/yay/{package}"),), True)
    lines = describe_strategy(strategy, {"package": "foo"}, _interpreter("arch"))
    assert lines == ["Execute: rm -rf ~/.cache/yay/foo", "Retry the original command"]


def test_unsupported_strategy_is_described_not_raised():
    lines = describe_strategy(ForceOverwrite(("*",)), {"package": "x"}, _interpreter("fedora"))
    assert lines[-1].startswith("Not available here:")


def test_environment_description():
    strategy = EnvironmentFix((("LANG", "C.UTF-8"),), permanent=True)
    lines = describe_strategy(strategy, {}, _interpreter("ubuntu"))
    assert lines == [
        "Set LANG=C.UTF-8 for this process",
        "Print export lines to add to your shell profile",
    ]


def test_display_analyses_renders_every_match(repository):
    analyses = analyze_error(
        "", "E: Could not get lock /var/lib/dpkg/lock", 100, platform_hint="ubuntu", repository=repository
    )
    with console.capture() as capture:
        display_analyses(analyses)
    output = capture.get()
    assert "APT lock held" in output
    assert "Suggested fixes" in output
    assert "Check for running package managers" in output


def test_status_lines_keep_square_brackets():
    with console.capture() as capture:
        print_status("Executing: pip install foo[dev]", "step")
        print_status("Command failed (exit 1): unexpected [/x] in output", "error")
        print_header("Fix: install foo[dev]")
    output = capture.get()
    assert "pip install foo[dev]" in output
    assert "unexpected [/x] in output" in output
    assert "install foo[dev]" in output
