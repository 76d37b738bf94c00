"""Tests for the risk gate."""

import io
from unittest.mock import Mock, patch

import pytest
from conftest import ScriptedPrompt

from pkgrecovery.recovery.models import BuiltIn, FixSuggestion, RiskLevel
from pkgrecovery.recovery.risk import (
    ConfirmStrength,
    ExecutionMode,
    GateAction,
    NoTerminalError,
    RiskGate,
    TerminalPrompt,
    should_execute,
)


def _fix(risk):
    return FixSuggestion("Do the thing", BuiltIn("clear_locks"), 0.9, True, risk)


class TestPolicyTable:
    @pytest.mark.parametrize("risk", list(RiskLevel))
    def test_dry_run_denies_everything(self, risk):
        assert should_execute(risk, ExecutionMode.DRY_RUN).action == GateAction.DENY

    @pytest.mark.parametrize("risk", [r for r in RiskLevel if r > RiskLevel.LOW])
    def test_auto_never_runs_above_low(self, risk):
        assert should_execute(risk, ExecutionMode.AUTO).action == GateAction.DENY

    @pytest.mark.parametrize("risk", [RiskLevel.SAFE, RiskLevel.LOW])
    def test_auto_allows_safe_and_low(self, risk):
        assert should_execute(risk, ExecutionMode.AUTO).action == GateAction.ALLOW_SILENTLY

    def test_interactive_rows(self):
        safe = should_execute(RiskLevel.SAFE, ExecutionMode.INTERACTIVE)
        low = should_execute(RiskLevel.LOW, ExecutionMode.INTERACTIVE)
        medium = should_execute(RiskLevel.MEDIUM, ExecutionMode.INTERACTIVE)
        high = should_execute(RiskLevel.HIGH, ExecutionMode.INTERACTIVE)

        assert safe.action == GateAction.ALLOW_SILENTLY
        assert (low.action, low.strength, low.warn) == (
            GateAction.REQUIRE_CONFIRM,
            ConfirmStrength.SIMPLE,
            False,
        )
        assert (medium.strength, medium.warn) == (ConfirmStrength.SIMPLE, True)
        assert high.strength == ConfirmStrength.STRONG

    def test_accepts_plain_strings(self):
        assert should_execute("low", "auto").action == GateAction.ALLOW_SILENTLY


class TestRiskGate:
    def test_safe_interactive_runs_without_prompt(self):
        prompt = ScriptedPrompt()
        assert RiskGate(prompt).authorize(_fix(RiskLevel.SAFE), ExecutionMode.INTERACTIVE)
        assert prompt.asked == []

    def test_low_interactive_asks_yes_no(self):
        prompt = ScriptedPrompt(confirm=True)
        assert RiskGate(prompt).authorize(_fix(RiskLevel.LOW), ExecutionMode.INTERACTIVE)
        assert prompt.asked[0][0] == "confirm"

    def test_declined_confirmation(self):
        prompt = ScriptedPrompt(confirm=False)
        assert not RiskGate(prompt).authorize(_fix(RiskLevel.MEDIUM), ExecutionMode.INTERACTIVE)

    @pytest.mark.parametrize("answer,allowed", [("YES", True), ("yes", False), ("y", False), ("", False)])
    def test_high_risk_needs_literal_yes(self, answer, allowed):
        prompt = ScriptedPrompt(confirm=True, text=answer)
        assert RiskGate(prompt).authorize(_fix(RiskLevel.HIGH), ExecutionMode.INTERACTIVE) is allowed
        assert prompt.asked[0][0] == "text"

    def test_missing_terminal_is_a_decline(self):
        prompt = ScriptedPrompt(error=NoTerminalError("no tty"))
        assert not RiskGate(prompt).authorize(_fix(RiskLevel.LOW), ExecutionMode.INTERACTIVE)

    def test_auto_never_prompts(self):
        prompt = ScriptedPrompt(confirm=True, text="YES")
        assert not RiskGate(prompt).authorize(_fix(RiskLevel.HIGH), ExecutionMode.AUTO)
        assert prompt.asked == []


class TestTerminalPrompt:
    def test_without_tty_raises(self):
        prompt = TerminalPrompt(stream=io.StringIO())
        with pytest.raises(NoTerminalError):
            prompt.confirm("Apply?")
        with pytest.raises(NoTerminalError):
            prompt.ask_text("Type YES")

    def test_closed_input_raises(self):
        tty = Mock()
        tty.isatty.return_value = True
        with patch("pkgrecovery.recovery.risk.Confirm.ask", side_effect=EOFError):
            with pytest.raises(NoTerminalError):
                TerminalPrompt(stream=tty).confirm("Apply?")

    def test_delegates_to_rich(self):
        tty = Mock()
        tty.isatty.return_value = True
        with patch("pkgrecovery.recovery.risk.Prompt.ask", return_value="YES") as ask:
            assert TerminalPrompt(stream=tty).ask_text("Type YES") == "YES"
        ask.assert_called_once()
