"""
Risk gate: decides whether a fix may run, and how it must be confirmed.

The policy is a fixed table keyed by execution mode and risk level. Auto
mode never allows anything above Low risk.
"""

import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from rich.prompt import Confirm, Prompt

from ..branding import console, print_status
from .models import FixSuggestion, RiskLevel

logger = logging.getLogger(__name__)

STRONG_CONFIRMATION_TOKEN = "YES"


class ExecutionMode(str, Enum):
    AUTO = "auto"
    INTERACTIVE = "interactive"
    DRY_RUN = "dry_run"


class GateAction(str, Enum):
    DENY = "deny"
    ALLOW_SILENTLY = "allow_silently"
    REQUIRE_CONFIRM = "require_confirm"


class ConfirmStrength(str, Enum):
    SIMPLE = "simple"  # yes/no
    STRONG = "strong"  # literal "YES"


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    strength: ConfirmStrength | None = None
    warn: bool = False

    @property
    def allowed_without_prompt(self) -> bool:
        return self.action == GateAction.ALLOW_SILENTLY


DENY = GateDecision(GateAction.DENY)
ALLOW = GateDecision(GateAction.ALLOW_SILENTLY)

_POLICY: dict[ExecutionMode, dict[RiskLevel, GateDecision]] = {
    ExecutionMode.DRY_RUN: {
        RiskLevel.SAFE: DENY,
        RiskLevel.LOW: DENY,
        RiskLevel.MEDIUM: DENY,
        RiskLevel.HIGH: DENY,
    },
    ExecutionMode.AUTO: {
        RiskLevel.SAFE: ALLOW,
        RiskLevel.LOW: ALLOW,
        RiskLevel.MEDIUM: DENY,
        RiskLevel.HIGH: DENY,
    },
    ExecutionMode.INTERACTIVE: {
        RiskLevel.SAFE: ALLOW,
        RiskLevel.LOW: GateDecision(GateAction.REQUIRE_CONFIRM, ConfirmStrength.SIMPLE),
        RiskLevel.MEDIUM: GateDecision(
            GateAction.REQUIRE_CONFIRM, ConfirmStrength.SIMPLE, warn=True
        ),
        RiskLevel.HIGH: GateDecision(GateAction.REQUIRE_CONFIRM, ConfirmStrength.STRONG, warn=True),
    },
}


def should_execute(risk: RiskLevel, mode: ExecutionMode) -> GateDecision:
    """Look up the gate decision for ``risk`` in ``mode``."""
    return _POLICY[ExecutionMode(mode)][RiskLevel(risk)]


# =============================================================================
# CONFIRMATION
# =============================================================================


class NoTerminalError(RuntimeError):
    """Raised when confirmation is needed but no terminal is attached."""


class ConfirmationPrompt(ABC):
    """The two questions the gate can ask."""

    @abstractmethod
    def confirm(self, message: str) -> bool:
        """Yes/no question. Raises NoTerminalError without a terminal."""

    @abstractmethod
    def ask_text(self, message: str) -> str:
        """Free-text question. Raises NoTerminalError without a terminal."""


class TerminalPrompt(ConfirmationPrompt):
    """Prompts on the controlling terminal using rich."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin

    def available(self) -> bool:
        try:
            return self.stream.isatty()
        except (AttributeError, ValueError):
            return False

    def confirm(self, message: str) -> bool:
        if not self.available():
            raise NoTerminalError("No terminal available for confirmation")
        try:
            return Confirm.ask(message, console=console, default=False)
        except EOFError as e:
            raise NoTerminalError("Input closed while waiting for confirmation") from e

    def ask_text(self, message: str) -> str:
        if not self.available():
            raise NoTerminalError("No terminal available for confirmation")
        try:
            return Prompt.ask(message, console=console, default="")
        except EOFError as e:
            raise NoTerminalError("Input closed while waiting for confirmation") from e


class RiskGate:
    """Applies the policy table and runs the required confirmation."""

    def __init__(self, prompt: ConfirmationPrompt | None = None):
        self.prompt = prompt or TerminalPrompt()

    def authorize(self, fix: FixSuggestion, mode: ExecutionMode) -> bool:
        """Return True if ``fix`` may run now. Declines are reported, never raised."""
        decision = should_execute(fix.risk_level, mode)
        logger.info(
            "Gate decision for %s risk in %s mode: %s",
            fix.risk_level.value,
            ExecutionMode(mode).value,
            decision.action.value,
        )

        if decision.action == GateAction.DENY:
            return False
        if decision.action == GateAction.ALLOW_SILENTLY:
            return True

        if decision.warn:
            level = fix.risk_level.value.upper()
            print_status(f"This fix has {level} risk: {fix.description}", "warning")
            if fix.risk_level == RiskLevel.HIGH:
                print_status("It can replace files owned by other packages", "warning")
            else:
                print_status("It may modify system state", "warning")

        try:
            if decision.strength == ConfirmStrength.STRONG:
                answer = self.prompt.ask_text(
                    f"Type '{STRONG_CONFIRMATION_TOKEN}' to apply this fix"
                )
                return answer == STRONG_CONFIRMATION_TOKEN
            return self.prompt.confirm("Apply this fix?")
        except NoTerminalError as e:
            logger.info("Treating missing terminal as a decline: %s", e)
            print_status("No terminal available, fix not applied", "warning")
            return False
