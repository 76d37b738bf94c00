import argparse
import logging
import sys
from pathlib import Path

from rich.table import Table

from pkgrecovery import __version__
from pkgrecovery.branding import console, print_header, print_status
from pkgrecovery.config import ConfigError, ConfigManager, RecoveryConfig
from pkgrecovery.platform_info import detect_platform, package_manager_family
from pkgrecovery.recovery.analyzer import analyze_error
from pkgrecovery.recovery.display import display_analyses
from pkgrecovery.recovery.orchestrator import RecoveryOrchestrator
from pkgrecovery.recovery.repository import PatternLoadError, get_default_repository
from pkgrecovery.recovery.risk import ExecutionMode
from pkgrecovery.recovery.system_check import SystemRecoveryCheck


class RecoveryCLI:
    def __init__(self, config: RecoveryConfig):
        self.config = config
        self.platform_hint = config.platform or detect_platform()

    def _orchestrator(self) -> RecoveryOrchestrator:
        return RecoveryOrchestrator(config=self.config, platform_hint=self.platform_hint)

    def run(self, command: list[str], auto_fix: bool = True) -> int:
        if command and command[0] == "--":
            command = command[1:]
        if not command:
            print_status("No command given. Usage: pkgrecovery run -- <command> [args...]", "error")
            return 2
        if not auto_fix:
            self.config.auto_fix = False
        return self._orchestrator().run_and_recover(command)

    def fix_last_error(self, auto: bool = False, dry_run: bool = False) -> int:
        report = self._orchestrator().analyze_last_error(dry_run=dry_run, auto=auto)
        if report is None or dry_run or report.recovered:
            return 0
        return 1

    def system_recovery(self, auto: bool = False, dry_run: bool = False) -> int:
        if dry_run:
            mode = ExecutionMode.DRY_RUN
        elif auto:
            mode = ExecutionMode.AUTO
        else:
            mode = ExecutionMode.INTERACTIVE
        check = SystemRecoveryCheck(family=package_manager_family(self.platform_hint))
        check.run(mode)
        return 0

    def analyze(
        self,
        exit_code: int,
        stdout_file: str | None = None,
        stderr_file: str | None = None,
        platform: str | None = None,
    ) -> int:
        stdout = Path(stdout_file).read_text(encoding="utf-8") if stdout_file else ""
        if stderr_file == "-":
            stderr = sys.stdin.read()
        else:
            stderr = Path(stderr_file).read_text(encoding="utf-8") if stderr_file else ""

        analyses = analyze_error(
            stdout,
            stderr,
            exit_code,
            platform_hint=platform or self.platform_hint,
            repository=get_default_repository(self.config.extra_patterns_dir),
        )
        display_analyses(analyses)
        return 0

    def patterns(self, platform: str | None = None, stats: bool = False) -> int:
        repository = get_default_repository(self.config.extra_patterns_dir)

        if stats:
            summary = repository.statistics()
            print_header("Recovery Pattern Database")
            console.print(f"   • Total patterns: {summary.total_patterns}")
            for family, count in summary.by_family.items():
                console.print(f"   • {family.capitalize()} patterns: {count}")
            console.print(f"   • Average success rate: {summary.average_success_rate:.0%}")
            console.print("\n[bold]Categories[/bold]")
            for category, count in sorted(summary.by_category.items()):
                console.print(f"   • {category}: {count} patterns")
            return 0

        patterns = repository.for_platform(platform.lower()) if platform else repository.all_patterns()
        table = Table(title="Error Patterns", border_style="dim")
        table.add_column("ID", style="cyan")
        table.add_column("Family")
        table.add_column("Category")
        table.add_column("Severity")
        table.add_column("Success", justify="right")
        table.add_column("Platforms", style="dim")
        for pattern in patterns:
            table.add_row(
                pattern.id,
                pattern.family,
                pattern.category.value,
                pattern.severity.value,
                f"{pattern.success_rate:.0%}",
                ", ".join(sorted(pattern.applicable_platforms)) or "any",
            )
        console.print(table)
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pkgrecovery",
        description="Diagnose and repair failed package-manager commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pkgrecovery run -- sudo apt-get install nginx
  pkgrecovery fix --last-error
  pkgrecovery fix --last-error --dry-run
  pkgrecovery fix --auto
  pkgrecovery analyze --stderr err.txt --exit-code 100 --platform ubuntu
  pkgrecovery patterns --stats

Environment Variables:
  PKGRECOVERY_AUTO_FIX       Enable/disable automatic fixes (true/false)
  PKGRECOVERY_PLATFORM       Override the detected platform (ubuntu, fedora, arch, ...)
  PKGRECOVERY_STATE_DIR      Where the last error record is kept
  PKGRECOVERY_PATTERNS_DIR   Directory with extra *.yaml rule files
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run a command and recover if it fails")
    run_parser.add_argument(
        "--no-auto-fix", action="store_true", help="Never apply fixes automatically"
    )
    run_parser.add_argument("argv", nargs=argparse.REMAINDER, help="Command to run (after --)")

    fix_parser = subparsers.add_parser("fix", help="Fix the last error or check the system")
    fix_parser.add_argument(
        "--last-error", action="store_true", help="Analyze and fix the last recorded failure"
    )
    fix_parser.add_argument("--auto", action="store_true", help="Apply low-risk fixes without asking")
    fix_parser.add_argument("--dry-run", action="store_true", help="Describe fixes without running them")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze captured command output")
    analyze_parser.add_argument("--stdout", dest="stdout_file", help="File with captured stdout")
    analyze_parser.add_argument(
        "--stderr", dest="stderr_file", help="File with captured stderr ('-' for stdin)"
    )
    analyze_parser.add_argument("--exit-code", type=int, required=True, help="Exit status")
    analyze_parser.add_argument("--platform", help="Platform hint (ubuntu, fedora, arch, ...)")

    patterns_parser = subparsers.add_parser("patterns", help="List known error patterns")
    patterns_parser.add_argument("--platform", help="Only patterns for this platform")
    patterns_parser.add_argument("--stats", action="store_true", help="Show statistics")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = ConfigManager(args.config).load()
    except ConfigError as e:
        print_status(f"Configuration error: {e}", "error")
        return 1

    cli = RecoveryCLI(config)

    try:
        if args.command == "run":
            return cli.run(args.argv, auto_fix=not args.no_auto_fix)
        elif args.command == "fix":
            if args.last_error:
                return cli.fix_last_error(auto=args.auto, dry_run=args.dry_run)
            return cli.system_recovery(auto=args.auto, dry_run=args.dry_run)
        elif args.command == "analyze":
            return cli.analyze(
                args.exit_code,
                stdout_file=args.stdout_file,
                stderr_file=args.stderr_file,
                platform=args.platform,
            )
        elif args.command == "patterns":
            return cli.patterns(platform=args.platform, stats=args.stats)
        else:
            parser.print_help()
            return 1
    except PatternLoadError as e:
        print_status(f"Invalid error pattern: {e}", "error")
        return 1
    except KeyboardInterrupt:
        print("\n❌ Operation cancelled by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
