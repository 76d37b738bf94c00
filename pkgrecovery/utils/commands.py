"""
Command execution helpers for pkgrecovery.

Every external process the recovery engine starts goes through
``run_command`` so callers get a uniform ``CommandResult`` and tests can
swap the runner for a mock.
"""

import glob
import logging
import os
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Conventional shell exit codes for failures that happen before the process runs
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127

GLOB_CHARS = ("*", "?", "[")


@dataclass
class CommandResult:
    """Outcome of a single external command."""

    success: bool
    stdout: str
    stderr: str
    return_code: int

    @property
    def combined_output(self) -> str:
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


CommandRunner = Callable[[Sequence[str]], CommandResult]


def expand_argument(arg: str) -> list[str]:
    """Expand ``~`` and glob characters in path-like arguments.

    Only arguments that look like paths (start with ``/`` or ``~``) are
    touched. A glob that matches nothing is passed through unchanged so the
    called tool sees the literal text, the same as a shell with ``nullglob``
    disabled.
    """
    if not arg.startswith(("/", "~")):
        return [arg]

    expanded = os.path.expanduser(arg)
    if any(ch in expanded for ch in GLOB_CHARS):
        matches = sorted(glob.glob(expanded))
        if matches:
            return matches
    return [expanded]


def expand_arguments(args: Sequence[str]) -> list[str]:
    result: list[str] = []
    for arg in args:
        result.extend(expand_argument(arg))
    return result


def run_command(args: Sequence[str], timeout: float | None = None) -> CommandResult:
    """Run a command without a shell and capture its output.

    Args:
        args: Program and arguments.
        timeout: Optional timeout in seconds. The recovery engine never sets
            one; remediation commands block until they exit.

    Returns:
        CommandResult. Missing executables and OS errors are reported as a
        failed result instead of raising.
    """
    if not args:
        return CommandResult(False, "", "Empty command", 1)

    argv = list(args)
    logger.debug("Running command: %s", " ".join(argv))

    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        logger.warning("Executable not found: %s", argv[0])
        return CommandResult(False, "", f"{argv[0]}: command not found", EXIT_NOT_FOUND)
    except PermissionError as e:
        logger.warning("Cannot execute %s: %s", argv[0], e)
        return CommandResult(False, "", str(e), EXIT_NOT_EXECUTABLE)
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(argv))
        return CommandResult(False, "", f"Command timed out after {timeout} seconds", 124)
    except OSError as e:
        logger.error("Failed to start %s: %s", argv[0], e)
        return CommandResult(False, "", str(e), 1)

    logger.debug("Command exited with %d: %s", result.returncode, argv[0])
    return CommandResult(
        success=result.returncode == 0,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        return_code=result.returncode,
    )
