"""
General system recovery check.

Looks for the usual reasons package operations fail before any command has
failed: leftover lock files, broken dependencies, expired signing keys and
full disks. Each finding can carry a suggested fix that goes through the
same risk gate as pattern-based fixes.
"""

import logging
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..branding import print_header, print_status
from ..utils.commands import CommandRunner, run_command
from .display import describe_strategy, report_outcome
from .fixer import FixInterpreter
from .models import (
    BuiltIn,
    Command,
    FixOutcome,
    FixStatus,
    FixSuggestion,
    RiskLevel,
    UpdateComponent,
)
from .risk import ExecutionMode, RiskGate

logger = logging.getLogger(__name__)

DISK_USAGE_THRESHOLD = 90  # percent
DISK_PATHS = ("/", "/var", "/tmp", "/home")

FAMILY_LOCK_PATHS = {
    "apt": ("/var/lib/dpkg/lock-frontend", "/var/lib/dpkg/lock", "/var/cache/apt/archives/lock"),
    "dnf": ("/var/run/yum.pid",),
    "pacman": ("/var/lib/pacman/db.lck",),
}

AUDIT_COMMANDS = {
    "apt": ["dpkg", "--audit"],
    "dnf": ["rpm", "-Va", "--nofiles", "--noscripts"],
    "pacman": ["pacman", "-Dk"],
}

# pacman -Dk prints a summary even when the database is healthy
AUDIT_BY_EXIT_STATUS = frozenset({"pacman"})

REPAIR_COMMANDS = {
    "apt": ("apt-get", "--fix-broken", "install", "-y"),
    "dnf": ("dnf", "distro-sync", "-y"),
}


@dataclass
class CheckResult:
    """Outcome of one system check."""

    name: str
    status: str  # "OK", "WARNING", "CRITICAL", "SKIPPED"
    details: str
    fix: FixSuggestion | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("OK", "SKIPPED")


class SystemRecoveryCheck:
    def __init__(
        self,
        family: str | None,
        runner: CommandRunner = run_command,
        interpreter: FixInterpreter | None = None,
        gate: RiskGate | None = None,
        disk_paths: Sequence[str] = DISK_PATHS,
        lock_paths: Sequence[str] | None = None,
    ):
        self.family = family
        self.runner = runner
        if lock_paths is None:
            lock_paths = FAMILY_LOCK_PATHS.get(family or "", ())
        self.lock_paths = tuple(lock_paths)
        self.interpreter = interpreter or FixInterpreter(
            runner=runner, family=family, lock_paths=self.lock_paths
        )
        self.gate = gate or RiskGate()
        self.disk_paths = tuple(disk_paths)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_locks(self) -> CheckResult:
        found = [lock for lock in self.lock_paths if Path(lock).exists()]
        if not found:
            return CheckResult("Package manager locks", "OK", "No package manager locks found")
        return CheckResult(
            "Package manager locks",
            "WARNING",
            "Found lock files: " + ", ".join(found)
            + ". They may belong to a running package manager or an interrupted operation.",
            FixSuggestion(
                "Remove stale lock files",
                BuiltIn("clear_locks"),
                estimated_success=0.8,
                requires_sudo=True,
                risk_level=RiskLevel.MEDIUM,
            ),
        )

    def check_broken_dependencies(self) -> CheckResult:
        audit = AUDIT_COMMANDS.get(self.family or "")
        if audit is None:
            return CheckResult("Dependencies", "SKIPPED", "No supported package manager detected")

        result = self.runner(audit)
        healthy = result.success and (
            self.family in AUDIT_BY_EXIT_STATUS or not result.stdout.strip()
        )
        if healthy:
            return CheckResult("Dependencies", "OK", "No broken dependencies found")

        repair = REPAIR_COMMANDS.get(self.family or "")
        fix = None
        if repair:
            fix = FixSuggestion(
                "Repair broken dependencies",
                Command(repair),
                estimated_success=0.85,
                requires_sudo=True,
                risk_level=RiskLevel.LOW,
            )
        detail = (result.stdout.strip() or result.stderr.strip()).splitlines()
        return CheckResult(
            "Dependencies",
            "CRITICAL",
            f"'{' '.join(audit)}' reported problems"
            + (f": {detail[0]}" if detail else f" (exit {result.return_code})"),
            fix,
        )

    def check_signing_keys(self) -> CheckResult:
        result = self.runner(["gpg", "--list-keys", "--with-colons"])
        if not result.success:
            return CheckResult("Signing keys", "SKIPPED", "gpg is not available")

        expired = [
            line for line in result.stdout.splitlines()
            if line.startswith("pub:") and line.split(":")[1] == "e"
        ]
        if not expired:
            return CheckResult("Signing keys", "OK", "All GPG keys are valid")
        return CheckResult(
            "Signing keys",
            "WARNING",
            f"Found {len(expired)} expired GPG key(s)",
            FixSuggestion(
                "Update the distribution keyring",
                UpdateComponent("keyring"),
                estimated_success=0.75,
                requires_sudo=True,
                risk_level=RiskLevel.SAFE,
            ),
        )

    def check_disk_space(self) -> CheckResult:
        low = []
        for path in self.disk_paths:
            try:
                usage = shutil.disk_usage(path)
            except OSError:
                continue
            if usage.total == 0:
                continue
            percent = (usage.total - usage.free) * 100 // usage.total
            if percent > DISK_USAGE_THRESHOLD:
                low.append(f"{path} ({percent}% used)")

        if not low:
            return CheckResult("Disk space", "OK", "Adequate disk space available")
        return CheckResult(
            "Disk space",
            "WARNING",
            "Low disk space on " + ", ".join(low),
            FixSuggestion(
                "Clean package caches to free disk space",
                BuiltIn("cleanup_disk_space"),
                estimated_success=0.6,
                requires_sudo=True,
                risk_level=RiskLevel.LOW,
            ),
        )

    def run_checks(self) -> list[CheckResult]:
        checks = (
            self.check_locks,
            self.check_broken_dependencies,
            self.check_signing_keys,
            self.check_disk_space,
        )
        return [check() for check in checks]

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def run(self, mode: ExecutionMode = ExecutionMode.INTERACTIVE) -> list[CheckResult]:
        """Run every check and offer fixes for the findings."""
        print_header("System Recovery Check")
        results = self.run_checks()

        for result in results:
            status = {"OK": "success", "SKIPPED": "dim", "WARNING": "warning"}.get(
                result.status, "error"
            )
            print_status(f"{result.name}: {result.details}", status)

        for result in results:
            if result.fix is not None and not result.ok:
                self._offer(result.fix, mode)

        print_status("System recovery check complete", "success")
        return results

    def _offer(self, fix: FixSuggestion, mode: ExecutionMode) -> FixOutcome:
        print_header(f"Fix: {fix.description}")
        for line in describe_strategy(fix.strategy, {}, self.interpreter):
            print_status(line, "dim")

        if mode == ExecutionMode.DRY_RUN:
            return FixOutcome(False, FixStatus.DESCRIBED, "Dry run, not executed")
        if not self.gate.authorize(fix, mode):
            outcome = FixOutcome(False, FixStatus.DECLINED, "Fix not applied")
        else:
            outcome = self.interpreter.execute(
                fix.strategy,
                elevate=fix.requires_sudo,
                interactive=mode != ExecutionMode.AUTO,
            )
        report_outcome(outcome)
        return outcome
