"""
Recovery orchestrator.

Entry points:
    handle_failure       called after any failed command; may auto-fix
    analyze_last_error   replay of the persisted record, interactive,
                         auto or dry-run
    run_and_recover      run a command and hand failures to handle_failure
"""

import logging
import os
import shlex
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..branding import console, print_header, print_status
from ..config import RecoveryConfig
from ..platform_info import detect_platform
from ..utils.commands import CommandRunner, run_command
from .analyzer import AutoFixThresholds, ErrorAnalyzer
from .display import describe_strategy, display_analyses, report_outcome
from .fixer import FixInterpreter
from .last_error import LastErrorRecord, LastErrorStore
from .models import ErrorAnalysis, FixOutcome, FixStatus, FixSuggestion
from .repository import PatternRepository, get_default_repository
from .risk import ExecutionMode, RiskGate

logger = logging.getLogger(__name__)

KNOWN_PACKAGE_MANAGERS = frozenset(
    {
        "apt",
        "apt-get",
        "dpkg",
        "dnf",
        "yum",
        "rpm",
        "pacman",
        "yay",
        "paru",
        "makepkg",
        "pip",
        "pip3",
        "pipx",
        "npm",
        "yarn",
        "pnpm",
    }
)

_ELEVATION_COMMANDS = ("sudo", "doas")


def package_manager_from_command(command: str) -> str | None:
    """First program name in ``command`` after sudo and env assignments."""
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()

    skipping_sudo_flags = False
    for token in tokens:
        if token in _ELEVATION_COMMANDS:
            skipping_sudo_flags = True
            continue
        if skipping_sudo_flags and token.startswith("-"):
            continue
        if "=" in token and not token.startswith("-"):
            continue
        name = os.path.basename(token)
        return name if name in KNOWN_PACKAGE_MANAGERS else None
    return None


@dataclass
class FixAttempt:
    suggestion: FixSuggestion
    outcome: FixOutcome


@dataclass
class RecoveryReport:
    """What one orchestrator run found and did."""

    command: str
    exit_code: int
    analyses: list[ErrorAnalysis] = field(default_factory=list)
    attempts: list[FixAttempt] = field(default_factory=list)
    recovered: bool = False

    @property
    def matched(self) -> bool:
        return bool(self.analyses)


class RecoveryOrchestrator:
    """Wires analysis, the risk gate and the fix interpreter together."""

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        repository: PatternRepository | None = None,
        interpreter: FixInterpreter | None = None,
        store: LastErrorStore | None = None,
        gate: RiskGate | None = None,
        platform_hint: str | None = None,
        runner: CommandRunner = run_command,
    ):
        self.config = config or RecoveryConfig()
        self.platform_hint = platform_hint or self.config.platform or detect_platform()
        self.runner = runner
        self.repository = repository or get_default_repository(self.config.extra_patterns_dir)
        self.interpreter = interpreter or FixInterpreter(runner=runner, platform_hint=self.platform_hint)
        self.store = store or LastErrorStore(self.config.last_error_path)
        self.gate = gate or RiskGate()
        self.analyzer = ErrorAnalyzer(
            repository=self.repository,
            platform_hint=self.platform_hint,
            thresholds=AutoFixThresholds(
                min_confidence=self.config.auto_confidence_threshold,
                min_success=self.config.auto_min_success,
            ),
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_failure(
        self, command: str, stdout: str, stderr: str, exit_code: int
    ) -> RecoveryReport:
        """Record a failure, analyze it, and auto-fix when it is safe to."""
        report = RecoveryReport(command=command, exit_code=exit_code)
        if exit_code == 0:
            return report

        record = LastErrorRecord(command=command, exit_code=exit_code, stdout=stdout, stderr=stderr)
        self.store.save(record)

        report.analyses = self._analyze(record)
        if not report.analyses:
            print_status("No known error pattern matched this failure", "info")
            return report

        top = report.analyses[0]
        if self.config.auto_fix and self.analyzer.should_auto_fix(top):
            fix = top.best_fix
            print_status(
                f"Detected: {top.pattern.name} ({top.confidence:.0%} confidence)", "info"
            )
            outcome = self._attempt(top, fix, ExecutionMode.AUTO, record)
            report.attempts.append(FixAttempt(fix, outcome))
            if outcome.success:
                self.store.clear()
                report.recovered = True
                print_status("Recovered automatically", "success")
                return report

        display_analyses(report.analyses)
        print_status("Run 'pkgrecovery fix --last-error' to review and apply fixes", "info")
        return report

    def analyze_last_error(self, dry_run: bool = False, auto: bool = False) -> RecoveryReport | None:
        """Replay the persisted failure and offer its fixes in order.

        Stops at the first fix that succeeds and deletes the record.
        Returns None when there is no record.
        """
        record = self.store.load()
        if record is None:
            print_status("No recorded error to analyze", "info")
            return None

        if dry_run:
            mode = ExecutionMode.DRY_RUN
        elif auto:
            mode = ExecutionMode.AUTO
        else:
            mode = ExecutionMode.INTERACTIVE

        print_status(f"Last failed command: {record.command} (exit {record.exit_code})", "info")
        report = RecoveryReport(command=record.command, exit_code=record.exit_code)
        report.analyses = self._analyze(record)
        display_analyses(report.analyses)

        for analysis in report.analyses:
            for fix in analysis.suggested_fixes:
                outcome = self._attempt(analysis, fix, mode, record)
                report.attempts.append(FixAttempt(fix, outcome))
                if outcome.success:
                    report.recovered = True
                    break
            if report.recovered:
                break

        if report.recovered:
            self.store.clear()
            print_status("Error resolved", "success")
        elif mode == ExecutionMode.DRY_RUN:
            print_status("Dry run: nothing was executed", "warning")
        elif report.analyses:
            print_status("No fix resolved the error; the record was kept", "warning")
        return report

    def run_and_recover(self, argv: Sequence[str]) -> int:
        """Run ``argv``; on failure, hand it to handle_failure.

        Returns 0 when the command succeeded or was recovered, otherwise
        the command's exit code.
        """
        result = self.runner(list(argv))
        if result.stdout:
            console.print(result.stdout, end="", markup=False, highlight=False)
        if result.stderr:
            sys.stderr.write(result.stderr)

        if result.success:
            return 0

        report = self.handle_failure(
            shlex.join(argv), result.stdout, result.stderr, result.return_code
        )
        return 0 if report.recovered else result.return_code

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _analyze(self, record: LastErrorRecord) -> list[ErrorAnalysis]:
        return self.analyzer.analyze(
            record.stdout,
            record.stderr,
            record.exit_code,
            package_manager=package_manager_from_command(record.command),
        )

    def _attempt(
        self,
        analysis: ErrorAnalysis,
        fix: FixSuggestion,
        mode: ExecutionMode,
        record: LastErrorRecord,
    ) -> FixOutcome:
        """Gate, describe, execute and report one suggestion."""
        print_header(f"Fix: {fix.description}")
        for line in describe_strategy(fix.strategy, analysis.extracted_data, self.interpreter):
            print_status(line, "dim")

        if mode == ExecutionMode.DRY_RUN:
            return FixOutcome(False, FixStatus.DESCRIBED, "Dry run, not executed")

        if not self.gate.authorize(fix, mode):
            outcome = FixOutcome(False, FixStatus.DECLINED, "Fix not applied")
            report_outcome(outcome)
            return outcome

        outcome = self.interpreter.execute(
            fix.strategy,
            analysis.extracted_data,
            elevate=fix.requires_sudo and self.config.use_sudo,
            interactive=mode != ExecutionMode.AUTO,
        )

        if outcome.success and outcome.retry_original:
            outcome = self._retry_original(record, outcome, mode)

        report_outcome(outcome)
        return outcome

    def _retry_original(
        self, record: LastErrorRecord, outcome: FixOutcome, mode: ExecutionMode
    ) -> FixOutcome:
        """Re-run the failed command; the fix counts only if this succeeds."""
        try:
            argv = shlex.split(record.command)
        except ValueError as e:
            return FixOutcome.failed(f"Cannot re-run the original command: {e}")
        if not argv:
            return FixOutcome.failed("No original command to retry")

        if outcome.elevate_retry and argv[0] not in _ELEVATION_COMMANDS:
            if not self.config.use_sudo:
                return FixOutcome.failed("Retry needs sudo, but use_sudo is disabled")
            prefix = ["sudo", "-n"] if mode == ExecutionMode.AUTO else ["sudo"]
            argv = prefix + argv

        print_status(f"Retrying: {' '.join(argv)}", "step")
        result = self.runner(argv)
        commands = outcome.commands + [argv]
        logger.info("Retry of original command exited %d", result.return_code)

        if result.success:
            return FixOutcome.applied(
                f"{outcome.message}; original command now succeeds",
                guidance=outcome.guidance,
                commands=commands,
            )
        return FixOutcome.failed(
            f"Original command still fails (exit {result.return_code})",
            guidance=outcome.guidance,
            commands=commands,
        )
