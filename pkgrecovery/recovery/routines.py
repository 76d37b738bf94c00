"""
Named built-in remediation routines.

A routine receives a RoutineContext and returns a FixOutcome. Routines that
can only tell the user what to do return a MANUAL outcome, never success.
"""

import logging
import os
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..utils.commands import CommandResult
from .models import FixOutcome

logger = logging.getLogger(__name__)

DEFAULT_LOCK_PATHS = (
    "/var/lib/dpkg/lock-frontend",
    "/var/lib/dpkg/lock",
    "/var/cache/apt/archives/lock",
    "/var/lib/apt/lists/lock",
    "/var/run/yum.pid",
    "/var/lib/pacman/db.lck",
)

NETWORK_TIMEOUT_SECONDS = "120"


@dataclass
class RoutineContext:
    """What a routine may use: the step runner plus the current failure."""

    run: Callable[[Sequence[str]], CommandResult]
    family: str | None = None
    platform_hint: str | None = None
    captured: dict[str, str] = field(default_factory=dict)
    elevate: bool = False
    lock_paths: Sequence[str] = DEFAULT_LOCK_PATHS
    is_root: bool = False

    def run_all(self, commands: Sequence[Sequence[str]]) -> CommandResult | None:
        """Run commands in order. Returns the first failure, or None."""
        for argv in commands:
            result = self.run(argv)
            if not result.success:
                return result
        return None


def _no_package_manager() -> FixOutcome:
    return FixOutcome.failed("No supported package manager detected on this system")


def clear_locks(ctx: RoutineContext) -> FixOutcome:
    """Remove known package-manager lock files. Missing files are not an error."""
    removed: list[str] = []
    failed: list[str] = []

    for lock in ctx.lock_paths:
        path = Path(lock)
        try:
            if not (path.exists() or path.is_symlink()):
                continue
            path.unlink(missing_ok=True)
            removed.append(lock)
        except PermissionError:
            if ctx.elevate and ctx.run(["rm", "-f", lock]).success:
                removed.append(lock)
            else:
                failed.append(lock)
        except OSError as e:
            logger.warning("Cannot remove lock file %s: %s", lock, e)
            failed.append(lock)

    if failed:
        return FixOutcome.failed(f"Could not remove lock files: {', '.join(failed)}")
    if removed:
        logger.info("Removed lock files: %s", ", ".join(removed))
        return FixOutcome.applied(f"Removed {len(removed)} lock file(s)")
    return FixOutcome.applied("No stale lock files found")


def retry_with_sudo(ctx: RoutineContext) -> FixOutcome:
    if ctx.is_root:
        return FixOutcome.failed("Already running as root; retrying with sudo will not help")
    return FixOutcome.applied(
        "Retrying the original command with administrator privileges",
        retry_original=True,
        elevate_retry=True,
    )


def retry_with_timeout(ctx: RoutineContext) -> FixOutcome:
    # pip reads its socket timeout from the environment; apt/dnf retry on their own
    os.environ["PIP_DEFAULT_TIMEOUT"] = NETWORK_TIMEOUT_SECONDS
    return FixOutcome.applied(
        f"Retrying the original command with a {NETWORK_TIMEOUT_SECONDS}s network timeout",
        retry_original=True,
    )


_REFRESH_COMMANDS = {
    "apt": [["apt-get", "update"]],
    "dnf": [["dnf", "clean", "metadata"], ["dnf", "makecache"]],
    "pacman": [["pacman", "-Syy"]],
}

_SOURCES_LOCATIONS = {
    "apt": "/etc/apt/sources.list and /etc/apt/sources.list.d/",
    "dnf": "/etc/yum.repos.d/",
    "pacman": "/etc/pacman.conf and /etc/pacman.d/mirrorlist",
}


def fix_404_repos(ctx: RoutineContext) -> FixOutcome:
    """Refresh repository metadata and point at the broken source."""
    commands = _REFRESH_COMMANDS.get(ctx.family or "")
    if commands is None:
        return _no_package_manager()

    guidance = []
    url = ctx.captured.get("url")
    if url:
        guidance.append(
            f"{url} returned 404. Disable or correct that repository in "
            f"{_SOURCES_LOCATIONS[ctx.family]}"
        )

    failure = ctx.run_all(commands)
    if failure is not None:
        return FixOutcome.failed("Repository metadata refresh failed", guidance=guidance)
    return FixOutcome.applied("Repository metadata refreshed", guidance=guidance)


_BUILD_TOOLS = {
    "apt": ["apt-get", "install", "-y", "build-essential"],
    "dnf": ["dnf", "groupinstall", "-y", "Development Tools"],
    "pacman": ["pacman", "-S", "--needed", "--noconfirm", "base-devel"],
}


def install_build_tools(ctx: RoutineContext) -> FixOutcome:
    command = _BUILD_TOOLS.get(ctx.family or "")
    if command is None:
        return _no_package_manager()
    if not ctx.run(command).success:
        return FixOutcome.failed("Build tools installation failed")
    return FixOutcome.applied("Build tools installed", retry_original=True)


def _first_line(text: str) -> str | None:
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line
    return None


def find_and_install_library(ctx: RoutineContext) -> FixOutcome:
    """Find the package that ships a missing shared library and install it."""
    library = ctx.captured.get("library")
    if not library:
        return FixOutcome.failed("No library name was captured from the error output")
    library = os.path.basename(library)

    if ctx.family == "dnf":
        # dnf resolves file provides itself
        install = ["dnf", "install", "-y", f"*/{library}"]
    elif ctx.family == "pacman":
        search = ctx.run(["pacman", "-F", "-q", library])
        line = _first_line(search.stdout) if search.success else None
        if not line:
            return FixOutcome.failed(f"No package provides {library}")
        install = ["pacman", "-S", "--noconfirm", line.split("/")[-1]]
    elif ctx.family == "apt":
        search = ctx.run(["apt-file", "search", "-l", library])
        if search.return_code == 127:
            return FixOutcome.manual(
                "apt-file is not installed",
                [
                    "sudo apt-get install apt-file && sudo apt-file update",
                    f"apt-file search {library}",
                ],
            )
        line = _first_line(search.stdout) if search.success else None
        if not line:
            return FixOutcome.failed(f"No package provides {library}")
        install = ["apt-get", "install", "-y", line]
    else:
        return _no_package_manager()

    if not ctx.run(install).success:
        return FixOutcome.failed(f"Could not install the package providing {library}")
    return FixOutcome.applied(f"Installed the package providing {library}", retry_original=True)


_CLEANUP_COMMANDS = {
    "apt": [["apt-get", "clean"], ["apt-get", "autoremove", "--purge", "-y"]],
    "dnf": [["dnf", "clean", "all"], ["dnf", "autoremove", "-y"]],
    "pacman": [["pacman", "-Sc", "--noconfirm"]],
}


def cleanup_disk_space(ctx: RoutineContext) -> FixOutcome:
    commands = _CLEANUP_COMMANDS.get(ctx.family or "")
    if commands is None:
        return _no_package_manager()

    before = shutil.disk_usage("/").free
    failure = ctx.run_all(commands)
    if failure is not None:
        return FixOutcome.failed("Package cache cleanup failed")

    freed_mb = max(0, shutil.disk_usage("/").free - before) // (1024 * 1024)
    return FixOutcome.applied(f"Package caches cleaned ({freed_mb} MB freed)")


_UPDATE_COMMANDS = {
    "apt": [["apt-get", "update"], ["apt-get", "upgrade", "-y"]],
    "dnf": [["dnf", "upgrade", "--refresh", "-y"]],
    "pacman": [["pacman", "-Syu", "--noconfirm"]],
}


def update_system(ctx: RoutineContext) -> FixOutcome:
    commands = _UPDATE_COMMANDS.get(ctx.family or "")
    if commands is None:
        return _no_package_manager()
    if ctx.run_all(commands) is not None:
        return FixOutcome.failed("System update failed")
    return FixOutcome.applied("System updated", retry_original=True)


def suggest_env_var(ctx: RoutineContext) -> FixOutcome:
    variable = ctx.captured.get("variable")
    if not variable:
        return FixOutcome.manual(
            "A required environment variable is not set",
            ["Check the tool's documentation for the variables it needs"],
        )
    return FixOutcome.manual(
        f"Environment variable {variable} is not set",
        [f"export {variable}=<value>", "Add the export to your shell profile to keep it"],
    )


def switch_python_version(ctx: RoutineContext) -> FixOutcome:
    version = ctx.captured.get("version", "a supported version")
    return FixOutcome.manual(
        f"This package requires Python {version}",
        [
            f"Install a Python interpreter matching {version} (e.g. pyenv install <version>)",
            "Select it for this project (e.g. pyenv local <version>) and recreate the virtualenv",
        ],
    )


def switch_node_version(ctx: RoutineContext) -> FixOutcome:
    version = ctx.captured.get("version", "a supported version")
    return FixOutcome.manual(
        f"This module requires Node.js {version}",
        [
            f"nvm install <version matching {version}>",
            "nvm use <version>",
        ],
    )


Routine = Callable[[RoutineContext], FixOutcome]

BUILTIN_ROUTINES: dict[str, Routine] = {
    "clear_locks": clear_locks,
    "retry_with_sudo": retry_with_sudo,
    "retry_with_timeout": retry_with_timeout,
    "fix_404_repos": fix_404_repos,
    "install_build_tools": install_build_tools,
    "find_and_install_library": find_and_install_library,
    "cleanup_disk_space": cleanup_disk_space,
    "update_system": update_system,
    "suggest_env_var": suggest_env_var,
    "switch_python_version": switch_python_version,
    "switch_node_version": switch_node_version,
}

ROUTINE_DESCRIPTIONS = {
    "clear_locks": "Remove stale package-manager lock files",
    "retry_with_sudo": "Retry the failed command with sudo",
    "retry_with_timeout": "Retry the failed command with a longer network timeout",
    "fix_404_repos": "Refresh repository metadata and report broken sources",
    "install_build_tools": "Install the compiler toolchain",
    "find_and_install_library": "Find and install the package providing a missing library",
    "cleanup_disk_space": "Clean package caches and remove unused packages",
    "update_system": "Update all packages, then retry",
    "suggest_env_var": "Explain which environment variable to set",
    "switch_python_version": "Explain how to switch Python versions",
    "switch_node_version": "Explain how to switch Node.js versions",
}
