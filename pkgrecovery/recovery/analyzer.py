"""
Matching engine: evaluate every applicable pattern against one failure.
"""

import logging
from dataclasses import dataclass

from .models import SEVERITY_WEIGHTS, ErrorAnalysis, FixSuggestion, RiskLevel, clamp_unit
from .repository import PatternRepository, get_default_repository
from .suggestions import generate_suggestions

logger = logging.getLogger(__name__)

# Auto-fix gate thresholds
AUTO_CONFIDENCE_THRESHOLD = 0.9
AUTO_MIN_SUCCESS = 0.8
AUTO_MAX_RISK = RiskLevel.LOW


def analyze_error(
    stdout: str,
    stderr: str,
    exit_code: int,
    platform_hint: str | None = None,
    package_manager: str | None = None,
    repository: PatternRepository | None = None,
) -> list[ErrorAnalysis]:
    """Analyze captured command output against the pattern repository.

    Args:
        stdout: Captured standard output.
        stderr: Captured standard error.
        exit_code: Process exit status.
        platform_hint: Coarse platform id ("ubuntu", "arch", ...). None means
            consider every pattern.
        package_manager: Package manager that produced the failure, used to
            skip rules written for a different tool.
        repository: Pattern source; the bundled default when omitted.

    Returns:
        One ErrorAnalysis per matching pattern, highest confidence first.
        Ties keep repository order.
    """
    if exit_code == 0 and not stderr:
        return []

    repository = repository or get_default_repository()
    platform_hint = platform_hint.lower() if platform_hint else None
    package_manager = package_manager.lower() if package_manager else None

    analyses: list[ErrorAnalysis] = []
    for pattern in repository.all_patterns():
        if not pattern.applies_to_platform(platform_hint):
            continue
        if not pattern.applies_to_package_manager(package_manager):
            continue

        captured = pattern.matches(stdout, stderr, exit_code)
        if captured is None:
            continue

        confidence = clamp_unit(pattern.success_rate * SEVERITY_WEIGHTS[pattern.severity])
        analyses.append(
            ErrorAnalysis(
                pattern=pattern,
                confidence=confidence,
                extracted_data=captured,
                suggested_fixes=generate_suggestions(pattern),
            )
        )
        logger.debug("Pattern %s matched (confidence %.2f)", pattern.id, confidence)

    # sorted() is stable, so equal confidences keep repository order
    analyses = sorted(analyses, key=lambda a: -a.confidence)
    logger.info("Analysis matched %d patterns (exit code %d)", len(analyses), exit_code)
    return analyses


@dataclass
class AutoFixThresholds:
    min_confidence: float = AUTO_CONFIDENCE_THRESHOLD
    min_success: float = AUTO_MIN_SUCCESS


class ErrorAnalyzer:
    """Analyzer bound to one repository and platform."""

    def __init__(
        self,
        repository: PatternRepository | None = None,
        platform_hint: str | None = None,
        thresholds: AutoFixThresholds | None = None,
    ):
        self.repository = repository or get_default_repository()
        self.platform_hint = platform_hint
        self.thresholds = thresholds or AutoFixThresholds()

    def analyze(
        self,
        stdout: str,
        stderr: str,
        exit_code: int,
        package_manager: str | None = None,
    ) -> list[ErrorAnalysis]:
        return analyze_error(
            stdout,
            stderr,
            exit_code,
            platform_hint=self.platform_hint,
            package_manager=package_manager,
            repository=self.repository,
        )

    @staticmethod
    def get_best_fix(analyses: list[ErrorAnalysis]) -> FixSuggestion | None:
        if not analyses:
            return None
        return analyses[0].best_fix

    def should_auto_fix(self, analysis: ErrorAnalysis) -> bool:
        """Whether an analysis qualifies for unattended remediation.

        The risk ceiling is fixed at Low; only the confidence and success
        thresholds come from configuration.
        """
        fix = analysis.best_fix
        if fix is None:
            return False
        return (
            analysis.confidence >= self.thresholds.min_confidence
            and fix.risk_level <= AUTO_MAX_RISK
            and fix.estimated_success >= self.thresholds.min_success
        )
