"""
Fix interpreter: executes one FixStrategy.

Every string that can carry a ``{name}`` placeholder is substituted from the
captured data first. Unknown placeholders stay in the text verbatim.
Execution never raises for a failing step; the result is a FixOutcome.
"""

import logging
import os
import re
import shutil
from collections.abc import Mapping, Sequence

from ..branding import print_status
from ..platform_info import package_manager_family
from ..utils.commands import CommandResult, CommandRunner, expand_arguments, run_command
from .models import (
    BuiltIn,
    CleanRetry,
    Command,
    CommandSequence,
    Custom,
    EnvironmentFix,
    FixOutcome,
    FixStrategy,
    ForceOverwrite,
    Rebuild,
    Reconfigure,
    UpdateComponent,
)
from .routines import BUILTIN_ROUTINES, DEFAULT_LOCK_PATHS, RoutineContext

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

# AUR helpers refuse to run as root
NEVER_ELEVATE = frozenset({"yay", "paru", "makepkg"})

_KEYRING_PACKAGES = {
    "ubuntu": "ubuntu-keyring",
    "debian": "debian-archive-keyring",
    "fedora": "fedora-gpg-keys",
    "arch": "archlinux-keyring",
    "manjaro": "manjaro-keyring",
}

_FAMILY_KEYRINGS = {
    "apt": "debian-archive-keyring",
    "dnf": "fedora-gpg-keys",
    "pacman": "archlinux-keyring",
}


class PlanError(Exception):
    """A strategy cannot be turned into commands."""


class UnsupportedOnPlatform(PlanError):
    """A platform-conditioned strategy has no equivalent here."""


class UnsafeCapture(PlanError):
    """A captured value would escape the directory of a path argument."""


def substitute(template: str, captured: Mapping[str, str]) -> str:
    """Replace ``{key}`` with ``captured[key]``; leave unknown keys literal."""

    def _replace(match: re.Match) -> str:
        return captured.get(match.group(1), match.group(0))

    return PLACEHOLDER_RE.sub(_replace, template)


def _is_file_name(value: str) -> bool:
    return bool(value) and "/" not in value and value not in (".", "..")


def substitute_args(args: Sequence[str], captured: Mapping[str, str]) -> list[str]:
    """Substitute every argument.

    Inside path arguments (leading / or ~) a captured value must be a single
    file name, otherwise UnsafeCapture is raised.
    """
    for arg in args:
        if not arg.startswith(("/", "~")):
            continue
        for name in PLACEHOLDER_RE.findall(arg):
            value = captured.get(name)
            if value is not None and not _is_file_name(value):
                raise UnsafeCapture(f"Captured {name}={value!r} is not a plain file name")
    return [substitute(arg, captured) for arg in args]


class FixInterpreter:
    """Runs fix strategies through an injectable command runner."""

    def __init__(
        self,
        runner: CommandRunner = run_command,
        platform_hint: str | None = None,
        family: str | None = None,
        lock_paths: Sequence[str] = DEFAULT_LOCK_PATHS,
        sudo_prefix: Sequence[str] = ("sudo",),
        is_root: bool | None = None,
    ):
        self.runner = runner
        self.platform_hint = platform_hint.lower() if platform_hint else None
        self.family = family or package_manager_family(self.platform_hint)
        self.lock_paths = tuple(lock_paths)
        self.sudo_prefix = list(sudo_prefix)
        self.is_root = os.geteuid() == 0 if is_root is None else is_root
        self._elevate = False
        self._prefix: list[str] = list(self.sudo_prefix)
        self._executed: list[list[str]] = []

    # ------------------------------------------------------------------
    # Command building
    # ------------------------------------------------------------------

    def _aur_helper(self) -> str | None:
        for helper in ("yay", "paru"):
            if shutil.which(helper):
                return helper
        return None

    def _require_family(self, what: str) -> str:
        if self.family not in ("apt", "dnf", "pacman"):
            raise UnsupportedOnPlatform(f"{what} is not supported without a known package manager")
        return self.family

    def _rebuild_commands(self, package: str) -> list[list[str]]:
        family = self._require_family("Rebuild")
        if family == "pacman":
            helper = self._aur_helper()
            if helper:
                return [[helper, "-S", "--rebuild", "--noconfirm", package]]
            return [["pacman", "-S", "--noconfirm", package]]
        if family == "apt":
            return [["apt-get", "install", "--reinstall", "-y", package]]
        return [["dnf", "reinstall", "-y", package]]

    def _force_overwrite_commands(
        self, patterns: list[str], package: str | None
    ) -> list[list[str]]:
        family = self._require_family("Forced overwrite")
        if family == "pacman":
            if not package:
                raise UnsupportedOnPlatform("pacman needs the package name to force an overwrite")
            return [["pacman", "-S", "--noconfirm", "--overwrite", ",".join(patterns), package]]
        if family == "apt":
            overwrite = ["-o", "Dpkg::Options::=--force-overwrite"]
            if package:
                return [["apt-get", "install", "--reinstall", "-y", *overwrite, package]]
            return [["apt-get", "install", "-f", "-y", *overwrite]]
        raise UnsupportedOnPlatform("dnf has no forced-overwrite mode")

    def _update_component_commands(self, component: str) -> list[list[str]]:
        family = self._require_family("Component update")

        if component == "keyring":
            package = _KEYRING_PACKAGES.get(self.platform_hint or "", _FAMILY_KEYRINGS[family])
            if family == "pacman":
                return [["pacman", "-Sy", "--noconfirm", package], ["pacman-key", "--populate"]]
            if family == "apt":
                return [["apt-get", "install", "--only-upgrade", "-y", package]]
            return [["dnf", "upgrade", "-y", package]]

        if component == "ca-certificates":
            if family == "pacman":
                return [["pacman", "-S", "--noconfirm", "ca-certificates"], ["trust", "extract-compat"]]
            if family == "apt":
                return [
                    ["apt-get", "install", "--reinstall", "-y", "ca-certificates"],
                    ["update-ca-certificates"],
                ]
            return [["dnf", "reinstall", "-y", "ca-certificates"], ["update-ca-trust"]]

        if family == "pacman":
            return [["pacman", "-S", "--noconfirm", component]]
        if family == "apt":
            return [["apt-get", "install", "--only-upgrade", "-y", component]]
        return [["dnf", "upgrade", "-y", component]]

    def _reconfigure_commands(self, service: str) -> list[list[str]]:
        family = self._require_family("Reconfigure")
        if family != "apt":
            raise UnsupportedOnPlatform(f"No configuration step to re-run on {family}")
        return [["dpkg", "--configure", service]]

    def plan(self, strategy: FixStrategy, captured: Mapping[str, str]) -> list[list[str]]:
        """The external commands a strategy would run, placeholders substituted.

        Built-ins, environment fixes and Custom hooks run no fixed commands
        and plan to an empty list.

        Raises:
            UnsupportedOnPlatform: for platform-conditioned strategies with no
                equivalent on this platform.
            UnsafeCapture: when a captured value would change the directory
                of a path argument.
        """
        if isinstance(strategy, Command):
            return [substitute_args(strategy.args, captured)]
        if isinstance(strategy, CommandSequence):
            return [substitute_args(cmd, captured) for cmd in strategy.commands]
        if isinstance(strategy, CleanRetry):
            return [substitute_args(cmd, captured) for cmd in strategy.clean_commands]
        if isinstance(strategy, Rebuild):
            return self._rebuild_commands(substitute(strategy.package, captured))
        if isinstance(strategy, ForceOverwrite):
            patterns = substitute_args(strategy.patterns, captured)
            return self._force_overwrite_commands(patterns, captured.get("package"))
        if isinstance(strategy, UpdateComponent):
            return self._update_component_commands(substitute(strategy.component, captured))
        if isinstance(strategy, Reconfigure):
            return self._reconfigure_commands(substitute(strategy.service, captured))
        if isinstance(strategy, (BuiltIn, EnvironmentFix, Custom)):
            return []
        raise TypeError(f"Unknown fix strategy: {strategy!r}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _should_prefix(self, argv: Sequence[str]) -> bool:
        if not self._elevate or not self.sudo_prefix or self.is_root:
            return False
        return bool(argv) and argv[0] not in NEVER_ELEVATE and argv[0] != self._prefix[0]

    def run_step(self, argv: Sequence[str]) -> CommandResult:
        """Run one command, announcing it and recording the outcome."""
        command = expand_arguments(argv)
        if self._should_prefix(command):
            command = self._prefix + command

        print_status(f"Executing: {' '.join(command)}", "step")
        result = self.runner(command)
        self._executed.append(command)
        logger.info("Fix step exited %d: %s", result.return_code, " ".join(command))

        if not result.success:
            detail = (result.stderr or result.stdout).strip().splitlines()
            print_status(
                f"Command failed (exit {result.return_code})"
                + (f": {detail[-1]}" if detail else ""),
                "error",
            )
        return result

    def _run_sequence(self, commands: list[list[str]]) -> CommandResult | None:
        """Run in order, stopping at the first failure. No rollback."""
        for argv in commands:
            result = self.run_step(argv)
            if not result.success:
                return result
        return None

    def execute(
        self,
        strategy: FixStrategy,
        captured: Mapping[str, str] | None = None,
        elevate: bool = False,
        interactive: bool = True,
    ) -> FixOutcome:
        """Execute one strategy.

        Args:
            strategy: The strategy to run.
            captured: Values extracted from the error output.
            elevate: Prefix commands with sudo (skipped when already root).
            interactive: When False, sudo runs with -n so it fails instead of
                waiting for a password.

        Returns:
            FixOutcome. Truthy only when the strategy was applied.
        """
        captured = dict(captured or {})
        self._elevate = elevate
        self._prefix = list(self.sudo_prefix)
        if not interactive and self._prefix[:1] == ["sudo"] and "-n" not in self._prefix:
            self._prefix.append("-n")
        self._executed = []
        try:
            outcome = self._dispatch(strategy, captured)
        finally:
            self._elevate = False
        outcome.commands = list(self._executed)
        logger.info("Strategy %s finished: %s", strategy.kind, outcome.status.value)
        return outcome

    def _dispatch(self, strategy: FixStrategy, captured: dict[str, str]) -> FixOutcome:
        if isinstance(strategy, Custom):
            print_status(f"Custom fix '{strategy.name}' is not implemented", "warning")
            return FixOutcome.not_implemented(f"Custom fix '{strategy.name}' is not implemented")

        if isinstance(strategy, BuiltIn):
            return self._run_builtin(strategy.name, captured)

        if isinstance(strategy, EnvironmentFix):
            return self._apply_environment(strategy, captured)

        try:
            commands = self.plan(strategy, captured)
        except PlanError as e:
            print_status(str(e), "error")
            return FixOutcome.failed(str(e))

        failure = self._run_sequence(commands)
        if failure is not None:
            return FixOutcome.failed(f"Step failed with exit code {failure.return_code}")

        if isinstance(strategy, CleanRetry):
            return FixOutcome.applied(
                "Cleanup complete", retry_original=strategy.retry_original
            )
        return FixOutcome.applied("Fix applied")

    def _run_builtin(self, name: str, captured: dict[str, str]) -> FixOutcome:
        routine = BUILTIN_ROUTINES.get(name)
        if routine is None:
            print_status(f"Unknown built-in fix: {name}", "warning")
            return FixOutcome.not_implemented(f"Unknown built-in fix: {name}")

        context = RoutineContext(
            run=self.run_step,
            family=self.family,
            platform_hint=self.platform_hint,
            captured=captured,
            elevate=self._elevate,
            lock_paths=self.lock_paths,
            is_root=self.is_root,
        )
        print_status(f"Running built-in fix: {name}", "step")
        outcome = routine(context)
        for line in outcome.guidance:
            print_status(line, "info")
        return outcome

    def _apply_environment(self, strategy: EnvironmentFix, captured: dict[str, str]) -> FixOutcome:
        guidance = []
        for key, value in strategy.variables:
            value = substitute(value, captured)
            print_status(f"Setting {key}={value}", "step")
            os.environ[key] = value
            if strategy.permanent:
                guidance.append(f"export {key}={value}")

        if guidance:
            print_status("Add these lines to your shell profile to keep them:", "info")
            for line in guidance:
                print_status(line, "info")
        return FixOutcome.applied("Environment updated for this process", guidance=guidance)
