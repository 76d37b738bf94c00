"""
Rich rendering of analyses, suggestions and strategy descriptions.
"""

from collections.abc import Mapping, Sequence

from rich.markup import escape
from rich.table import Table

from ..branding import console, print_header, print_status
from .fixer import FixInterpreter, PlanError, substitute
from .models import (
    BuiltIn,
    CleanRetry,
    Custom,
    EnvironmentFix,
    ErrorAnalysis,
    ErrorSeverity,
    FixOutcome,
    FixStatus,
    FixStrategy,
    ForceOverwrite,
    Rebuild,
    Reconfigure,
    RiskLevel,
    UpdateComponent,
)
from .routines import ROUTINE_DESCRIPTIONS
from .suggestions import recommendations

SEVERITY_STYLES = {
    ErrorSeverity.CRITICAL: "bold red",
    ErrorSeverity.HIGH: "red",
    ErrorSeverity.MEDIUM: "yellow",
    ErrorSeverity.LOW: "green",
}

RISK_STYLES = {
    RiskLevel.SAFE: "green",
    RiskLevel.LOW: "cyan",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "bold red",
}

_OUTCOME_STATUS = {
    FixStatus.APPLIED: "success",
    FixStatus.FAILED: "error",
    FixStatus.DECLINED: "warning",
    FixStatus.NOT_IMPLEMENTED: "warning",
    FixStatus.MANUAL: "info",
    FixStatus.DESCRIBED: "info",
}


def describe_strategy(
    strategy: FixStrategy,
    captured: Mapping[str, str],
    interpreter: FixInterpreter,
) -> list[str]:
    """Human-readable lines saying what ``strategy`` would do."""
    lines: list[str] = []

    if isinstance(strategy, BuiltIn):
        summary = ROUTINE_DESCRIPTIONS.get(strategy.name)
        if summary is None:
            return [f"Unknown built-in fix '{strategy.name}' (not implemented)"]
        return [f"Run built-in fix '{strategy.name}': {summary}"]
    if isinstance(strategy, Custom):
        return [f"Custom fix '{strategy.name}' (not implemented, will not run)"]
    if isinstance(strategy, EnvironmentFix):
        for key, value in strategy.variables:
            lines.append(f"Set {key}={substitute(value, captured)} for this process")
        if strategy.permanent:
            lines.append("Print export lines to add to your shell profile")
        return lines

    if isinstance(strategy, Rebuild):
        lines.append(f"Rebuild package {substitute(strategy.package, captured)}")
    elif isinstance(strategy, ForceOverwrite):
        globs = ", ".join(substitute(p, captured) for p in strategy.patterns)
        lines.append(f"Reinstall forcing overwrite of: {globs}")
    elif isinstance(strategy, UpdateComponent):
        lines.append(f"Update component {substitute(strategy.component, captured)}")
    elif isinstance(strategy, Reconfigure):
        lines.append(f"Re-run configuration of {substitute(strategy.service, captured)}")

    try:
        commands = interpreter.plan(strategy, captured)
    except PlanError as e:
        lines.append(f"Not available here: {e}")
        return lines

    lines.extend(f"Execute: {' '.join(argv)}" for argv in commands)
    if isinstance(strategy, CleanRetry) and strategy.retry_original:
        lines.append("Retry the original command")
    return lines


def display_analyses(analyses: Sequence[ErrorAnalysis], show_advice: bool = True) -> None:
    if not analyses:
        print_status("No known error patterns matched", "info")
        return

    print_header("Error Analysis")

    for index, analysis in enumerate(analyses, 1):
        pattern = analysis.pattern
        severity_style = SEVERITY_STYLES[pattern.severity]

        table = Table(
            title=f"{index}. {escape(pattern.name)}",
            title_justify="left",
            show_header=False,
            border_style="dim",
        )
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Confidence", f"{analysis.confidence:.0%}")
        table.add_row(
            "Severity", f"[{severity_style}]{pattern.severity.value}[/{severity_style}]"
        )
        table.add_row("Category", f"[cyan]{pattern.category.value}[/cyan]")
        table.add_row("Description", escape(pattern.description))
        if analysis.extracted_data:
            extracted = ", ".join(
                f"{k}={v}" for k, v in sorted(analysis.extracted_data.items())
            )
            table.add_row("Extracted", escape(extracted))
        console.print(table)

        if analysis.suggested_fixes:
            console.print("   [bold]Suggested fixes:[/bold]")
        for number, fix in enumerate(analysis.suggested_fixes, 1):
            risk_style = RISK_STYLES[fix.risk_level]
            sudo = " [dim](requires sudo)[/dim]" if fix.requires_sudo else ""
            console.print(
                f"     {number}. {escape(fix.description)} "
                f"[{risk_style}]\\[{fix.risk_level.value} risk][/{risk_style}] "
                f"({fix.estimated_success:.0%} success){sudo}"
            )

        if show_advice:
            advice = recommendations(pattern.category, pattern.severity)
            console.print("   [bold]Recommendations:[/bold]")
            for line in advice:
                console.print(f"     [dim]•[/dim] {escape(line)}")


def report_outcome(outcome: FixOutcome) -> None:
    status = _OUTCOME_STATUS[outcome.status]
    message = outcome.message or outcome.status.value.replace("_", " ")
    print_status(f"{outcome.status.value.replace('_', ' ').capitalize()}: {message}", status)
