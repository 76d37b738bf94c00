"""
Suggestion generation for matched error patterns.

The primary suggestion is always the pattern's own strategy. Category
fallbacks follow it so the operator has something to try when the
pattern-specific fix does not work.
"""

from dataclasses import dataclass

from .models import (
    BuiltIn,
    CleanRetry,
    Command,
    ErrorCategory,
    ErrorPattern,
    ErrorSeverity,
    FixStrategy,
    FixSuggestion,
    ForceOverwrite,
    Rebuild,
    RiskLevel,
    UpdateComponent,
)

# Categories whose fixes touch system-owned state
SUDO_CATEGORIES = frozenset(
    {
        ErrorCategory.PERMISSION,
        ErrorCategory.PACKAGE,
        ErrorCategory.REPOSITORY,
        ErrorCategory.LOCK,
    }
)


def risk_for_strategy(strategy: FixStrategy) -> RiskLevel:
    """Risk implied by the strategy variant alone."""
    if isinstance(strategy, ForceOverwrite):
        return RiskLevel.HIGH
    if isinstance(strategy, CleanRetry):
        return RiskLevel.MEDIUM
    if isinstance(strategy, (Rebuild, Command)):
        return RiskLevel.LOW
    return RiskLevel.SAFE


def risk_for_pattern(pattern: ErrorPattern) -> RiskLevel:
    if pattern.risk_override is not None:
        return pattern.risk_override
    return risk_for_strategy(pattern.fix_strategy)


def requires_sudo(category: ErrorCategory) -> bool:
    return category in SUDO_CATEGORIES


@dataclass(frozen=True)
class Fallback:
    """A category-level generic suggestion with hand-picked estimates."""

    description: str
    strategy: FixStrategy
    estimated_success: float
    requires_sudo: bool
    risk_level: RiskLevel

    def to_suggestion(self) -> FixSuggestion:
        return FixSuggestion(
            description=self.description,
            strategy=self.strategy,
            estimated_success=self.estimated_success,
            requires_sudo=self.requires_sudo,
            risk_level=self.risk_level,
        )


CATEGORY_FALLBACKS: dict[ErrorCategory, tuple[Fallback, ...]] = {
    ErrorCategory.DEPENDENCY: (
        Fallback(
            "Update all packages and retry",
            BuiltIn("update_system"),
            0.7,
            True,
            RiskLevel.LOW,
        ),
    ),
    ErrorCategory.PERMISSION: (
        Fallback(
            "Retry with elevated privileges",
            BuiltIn("retry_with_sudo"),
            0.9,
            True,
            RiskLevel.SAFE,
        ),
    ),
    ErrorCategory.LOCK: (
        Fallback(
            "Force remove lock files and retry",
            BuiltIn("clear_locks"),
            0.8,
            True,
            RiskLevel.MEDIUM,
        ),
    ),
    ErrorCategory.DISK_SPACE: (
        Fallback(
            "Clean package caches to free disk space",
            BuiltIn("cleanup_disk_space"),
            0.6,
            True,
            RiskLevel.LOW,
        ),
    ),
    ErrorCategory.REPOSITORY: (
        Fallback(
            "Refresh repository metadata and report broken sources",
            BuiltIn("fix_404_repos"),
            0.6,
            True,
            RiskLevel.SAFE,
        ),
    ),
    ErrorCategory.KEYRING: (
        Fallback(
            "Update the distribution keyring",
            UpdateComponent("keyring"),
            0.75,
            True,
            RiskLevel.SAFE,
        ),
    ),
    ErrorCategory.NETWORK: (
        Fallback(
            "Retry with a longer network timeout",
            BuiltIn("retry_with_timeout"),
            0.5,
            False,
            RiskLevel.SAFE,
        ),
    ),
}


def generate_suggestions(pattern: ErrorPattern) -> list[FixSuggestion]:
    """Build the ranked suggestions for a matched pattern.

    Placeholders in strategies are left as-is here; they are substituted by
    the FixInterpreter at execution time.
    """
    suggestions = [
        FixSuggestion(
            description=pattern.description,
            strategy=pattern.fix_strategy,
            estimated_success=pattern.success_rate,
            requires_sudo=requires_sudo(pattern.category),
            risk_level=risk_for_pattern(pattern),
        )
    ]

    for fallback in CATEGORY_FALLBACKS.get(pattern.category, ()):
        if fallback.strategy == pattern.fix_strategy:
            continue
        suggestions.append(fallback.to_suggestion())

    return suggestions


_CATEGORY_ADVICE: dict[ErrorCategory, tuple[str, ...]] = {
    ErrorCategory.DEPENDENCY: (
        "Update all packages to resolve version conflicts",
        "Check for held packages that may be blocking updates",
        "Consider using --allowerasing flag if safe",
    ),
    ErrorCategory.PERMISSION: (
        "Retry with administrator privileges",
        "Check file ownership and permissions",
        "Ensure user is in required groups (wheel, sudo)",
    ),
    ErrorCategory.NETWORK: (
        "Check internet connectivity",
        "Try different mirror or repository",
        "Check proxy settings if behind firewall",
        "Verify DNS resolution is working",
    ),
    ErrorCategory.DISK_SPACE: (
        "Clean package cache to free space",
        "Remove unused packages and dependencies",
        "Check /tmp and /var for large files",
        "Consider expanding disk or moving to larger partition",
    ),
    ErrorCategory.REPOSITORY: (
        "Update repository metadata",
        "Check if repository URL has changed",
        "Verify GPG keys are up to date",
        "Consider switching to a different mirror",
    ),
    ErrorCategory.BUILD: (
        "Install required build dependencies",
        "Check compiler and toolchain versions",
        "Clean build cache and retry",
        "Review build logs for specific errors",
    ),
    ErrorCategory.KEYRING: (
        "Update system keyring package",
        "Refresh GPG keys from keyserver",
        "Import missing keys manually if needed",
    ),
    ErrorCategory.LOCK: (
        "Check for running package managers",
        "Safe to remove lock files if no operations running",
        "Reboot if lock persists after process termination",
    ),
    ErrorCategory.LIBRARY: (
        "Search for package providing the library",
        "Update library cache with ldconfig",
        "Check library path configuration",
        "Consider installing development packages",
    ),
}

_GENERIC_ADVICE = (
    "Review error details for specific solution",
    "Check system logs for additional information",
)


def recommendations(category: ErrorCategory, severity: ErrorSeverity) -> list[str]:
    """Human advice to show next to an analysis."""
    if category == ErrorCategory.PACKAGE:
        if severity == ErrorSeverity.CRITICAL:
            return [
                "DO NOT force operation - may break system",
                "Backup system before proceeding",
            ]
        return [
            "Try rebuilding the package from source",
            "Check for file conflicts with other packages",
        ]
    return list(_CATEGORY_ADVICE.get(category, _GENERIC_ADVICE))
