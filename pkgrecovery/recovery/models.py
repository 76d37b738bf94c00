"""Data models for the error recovery engine.

Patterns are immutable and loaded once. Analyses and suggestions are built
fresh for every failure and thrown away afterwards.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Union


class _RankOrdered:
    """Compare enum members by ``rank`` instead of by their string value."""

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank >= other.rank


class ErrorCategory(str, Enum):
    """Broad class of failure a pattern recognizes."""

    DEPENDENCY = "dependency"
    PERMISSION = "permission"
    NETWORK = "network"
    DISK_SPACE = "disk_space"
    CONFIGURATION = "configuration"
    PACKAGE = "package"
    REPOSITORY = "repository"
    BUILD = "build"
    SIGNATURE = "signature"
    LOCK = "lock"
    LIBRARY = "library"
    KEYRING = "keyring"
    DATABASE = "database"
    ENVIRONMENT = "environment"


class ErrorSeverity(_RankOrdered, str, Enum):
    """Severity of a failure. Ordered Low < Medium < High < Critical."""

    CRITICAL = "critical"  # System breaking
    HIGH = "high"  # Operation failure
    MEDIUM = "medium"  # Degraded functionality
    LOW = "low"  # Minor issue

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ErrorSeverity.LOW: 0,
    ErrorSeverity.MEDIUM: 1,
    ErrorSeverity.HIGH: 2,
    ErrorSeverity.CRITICAL: 3,
}

# Confidence multiplier per severity; strictly decreasing with severity
SEVERITY_WEIGHTS: dict[ErrorSeverity, float] = {
    ErrorSeverity.CRITICAL: 1.0,
    ErrorSeverity.HIGH: 0.95,
    ErrorSeverity.MEDIUM: 0.9,
    ErrorSeverity.LOW: 0.85,
}


class RiskLevel(_RankOrdered, str, Enum):
    """How much harm a remediation can do. Ordered Safe < Low < Medium < High."""

    SAFE = "safe"  # No risk
    LOW = "low"  # Minimal risk
    MEDIUM = "medium"  # Some risk, reversible
    HIGH = "high"  # Significant risk

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.SAFE: 0,
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
}


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


# =============================================================================
# MATCHERS
# =============================================================================


class MatchLocation(str, Enum):
    """Which part of the captured output a matcher inspects."""

    STDOUT = "stdout"
    STDERR = "stderr"
    COMBINED = "combined"
    EXIT_CODE = "exit_code"


COMBINED_SEPARATOR = "\n"


@dataclass(frozen=True)
class PatternMatcher:
    """One regex-plus-location test.

    ``capture_groups[i]`` names regex group ``i + 1``. For
    ``MatchLocation.EXIT_CODE`` the regex is ignored and ``exit_code`` is
    compared numerically.
    """

    regex: str
    location: MatchLocation = MatchLocation.STDERR
    capture_groups: tuple[str, ...] = ()
    exit_code: int | None = None
    compiled: re.Pattern | None = field(default=None, compare=False, repr=False)

    @classmethod
    def exit_code_equals(cls, code: int) -> "PatternMatcher":
        return cls(regex="", location=MatchLocation.EXIT_CODE, exit_code=code)

    def select_text(self, stdout: str, stderr: str) -> str:
        if self.location == MatchLocation.STDOUT:
            return stdout
        if self.location == MatchLocation.STDERR:
            return stderr
        return f"{stdout}{COMBINED_SEPARATOR}{stderr}"

    def evaluate(self, stdout: str, stderr: str, exit_code: int) -> dict[str, str] | None:
        """Return captured values on success, None when the matcher fails."""
        if self.location == MatchLocation.EXIT_CODE:
            return {} if self.exit_code == exit_code else None

        regex = self.compiled or re.compile(self.regex, re.MULTILINE)
        match = regex.search(self.select_text(stdout, stderr))
        if match is None:
            return None

        captured: dict[str, str] = {}
        for index, name in enumerate(self.capture_groups, start=1):
            if index > (regex.groups or 0):
                break
            value = match.group(index)
            if value is not None:
                captured[name] = value
        return captured


# =============================================================================
# FIX STRATEGIES
# =============================================================================
# FixStrategy is a closed union. Consumers dispatch on the concrete class;
# FixInterpreter.plan and strategy_to_dict raise TypeError for anything else.


@dataclass(frozen=True)
class Command:
    """Run one external command."""

    args: tuple[str, ...]

    kind: ClassVar[str] = "command"


@dataclass(frozen=True)
class CommandSequence:
    """Run commands in order, stopping at the first failure."""

    commands: tuple[tuple[str, ...], ...]

    kind: ClassVar[str] = "sequence"


@dataclass(frozen=True)
class BuiltIn:
    """Invoke a named engine-internal remediation routine."""

    name: str

    kind: ClassVar[str] = "builtin"


@dataclass(frozen=True)
class Rebuild:
    """Rebuild or reinstall a named package."""

    package: str

    kind: ClassVar[str] = "rebuild"


@dataclass(frozen=True)
class ForceOverwrite:
    """Reinstall forcing overwrite of conflicting files."""

    patterns: tuple[str, ...]

    kind: ClassVar[str] = "force_overwrite"


@dataclass(frozen=True)
class CleanRetry:
    """Run cleanup commands, then optionally retry the failed operation."""

    clean_commands: tuple[tuple[str, ...], ...]
    retry_original: bool = True

    kind: ClassVar[str] = "clean_retry"


@dataclass(frozen=True)
class UpdateComponent:
    """Update a named system component such as the keyring."""

    component: str

    kind: ClassVar[str] = "update_component"


@dataclass(frozen=True)
class Reconfigure:
    """Re-run a service's configuration step."""

    service: str

    kind: ClassVar[str] = "reconfigure"


@dataclass(frozen=True)
class EnvironmentFix:
    """Set environment variables for this process."""

    variables: tuple[tuple[str, str], ...]
    permanent: bool = False

    kind: ClassVar[str] = "environment"

    @property
    def variable_map(self) -> dict[str, str]:
        return dict(self.variables)


@dataclass(frozen=True)
class Custom:
    """A named hook the engine does not model. Never executed."""

    name: str

    kind: ClassVar[str] = "custom"


FixStrategy = Union[
    Command,
    CommandSequence,
    BuiltIn,
    Rebuild,
    ForceOverwrite,
    CleanRetry,
    UpdateComponent,
    Reconfigure,
    EnvironmentFix,
    Custom,
]

STRATEGY_TYPES: tuple[type, ...] = (
    Command,
    CommandSequence,
    BuiltIn,
    Rebuild,
    ForceOverwrite,
    CleanRetry,
    UpdateComponent,
    Reconfigure,
    EnvironmentFix,
    Custom,
)


def strategy_to_dict(strategy: FixStrategy) -> dict:
    """Serialize a strategy to the same shape the rule files use."""
    if isinstance(strategy, Command):
        return {"command": list(strategy.args)}
    if isinstance(strategy, CommandSequence):
        return {"sequence": [list(c) for c in strategy.commands]}
    if isinstance(strategy, BuiltIn):
        return {"builtin": strategy.name}
    if isinstance(strategy, Rebuild):
        return {"rebuild": {"package": strategy.package}}
    if isinstance(strategy, ForceOverwrite):
        return {"force_overwrite": {"patterns": list(strategy.patterns)}}
    if isinstance(strategy, CleanRetry):
        return {
            "clean_retry": {
                "clean_commands": [list(c) for c in strategy.clean_commands],
                "retry_original": strategy.retry_original,
            }
        }
    if isinstance(strategy, UpdateComponent):
        return {"update_component": {"component": strategy.component}}
    if isinstance(strategy, Reconfigure):
        return {"reconfigure": {"service": strategy.service}}
    if isinstance(strategy, EnvironmentFix):
        return {
            "environment": {
                "variables": strategy.variable_map,
                "permanent": strategy.permanent,
            }
        }
    if isinstance(strategy, Custom):
        return {"custom": strategy.name}
    raise TypeError(f"Unknown fix strategy: {strategy!r}")


# =============================================================================
# PATTERNS, SUGGESTIONS, ANALYSES
# =============================================================================

# Front ends pass through the errors of the tools they drive
PACKAGE_MANAGER_BACKENDS: dict[str, tuple[str, ...]] = {
    "yay": ("pacman", "makepkg"),
    "paru": ("pacman", "makepkg"),
    "makepkg": ("pacman",),
    "apt": ("dpkg",),
    "apt-get": ("dpkg",),
    "dnf": ("rpm",),
    "yum": ("rpm",),
}


@dataclass(frozen=True)
class ErrorPattern:
    """A declarative rule describing one class of failure."""

    id: str
    name: str
    description: str
    category: ErrorCategory
    severity: ErrorSeverity
    matchers: tuple[PatternMatcher, ...]
    fix_strategy: FixStrategy
    success_rate: float
    applicable_platforms: frozenset[str] = frozenset()
    applicable_package_managers: frozenset[str] = frozenset()
    risk_override: RiskLevel | None = None
    family: str = "common"

    def applies_to_platform(self, platform_hint: str | None) -> bool:
        if not platform_hint or not self.applicable_platforms:
            return True
        return platform_hint in self.applicable_platforms

    def applies_to_package_manager(self, package_manager: str | None) -> bool:
        if not package_manager or not self.applicable_package_managers:
            return True
        producers = {package_manager, *PACKAGE_MANAGER_BACKENDS.get(package_manager, ())}
        return not producers.isdisjoint(self.applicable_package_managers)

    def matches(self, stdout: str, stderr: str, exit_code: int) -> dict[str, str] | None:
        """Evaluate all matchers (logical AND).

        Returns the merged captures, or None as soon as one matcher fails.
        """
        captured: dict[str, str] = {}
        for matcher in self.matchers:
            result = matcher.evaluate(stdout, stderr, exit_code)
            if result is None:
                return None
            captured.update(result)
        return captured


@dataclass
class FixSuggestion:
    """One ranked remediation option."""

    description: str
    strategy: FixStrategy
    estimated_success: float
    requires_sudo: bool
    risk_level: RiskLevel

    def __post_init__(self):
        self.estimated_success = clamp_unit(self.estimated_success)


@dataclass
class ErrorAnalysis:
    """Result of one pattern matching one failure."""

    pattern: ErrorPattern
    confidence: float
    extracted_data: dict[str, str] = field(default_factory=dict)
    suggested_fixes: list[FixSuggestion] = field(default_factory=list)

    def __post_init__(self):
        self.confidence = clamp_unit(self.confidence)

    @property
    def best_fix(self) -> FixSuggestion | None:
        return self.suggested_fixes[0] if self.suggested_fixes else None


# =============================================================================
# EXECUTION OUTCOMES
# =============================================================================


class FixStatus(str, Enum):
    """What happened when a fix was attempted."""

    APPLIED = "applied"
    FAILED = "failed"
    DECLINED = "declined"
    NOT_IMPLEMENTED = "not_implemented"
    MANUAL = "manual"  # guidance only, the user has to act
    DESCRIBED = "described"  # dry run


@dataclass
class FixOutcome:
    """Result of executing one strategy.

    ``retry_original`` asks the caller to run the failed command again;
    ``elevate_retry`` asks for that retry to run under sudo.
    """

    success: bool
    status: FixStatus
    message: str = ""
    retry_original: bool = False
    elevate_retry: bool = False
    guidance: list[str] = field(default_factory=list)
    commands: list[list[str]] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def applied(cls, message: str = "", **kwargs) -> "FixOutcome":
        return cls(True, FixStatus.APPLIED, message, **kwargs)

    @classmethod
    def failed(cls, message: str = "", **kwargs) -> "FixOutcome":
        return cls(False, FixStatus.FAILED, message, **kwargs)

    @classmethod
    def manual(cls, message: str, guidance: list[str]) -> "FixOutcome":
        return cls(False, FixStatus.MANUAL, message, guidance=guidance)

    @classmethod
    def not_implemented(cls, message: str) -> "FixOutcome":
        return cls(False, FixStatus.NOT_IMPLEMENTED, message)
