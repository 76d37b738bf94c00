"""
Pattern repository for the error recovery engine.

Rules live in YAML files (one per platform family) and are validated and
compiled once at startup. Any invalid rule rejects the whole repository:
a half-loaded rule set would give silently different answers.
"""

import dataclasses
import logging
import re
from collections import Counter
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from .models import (
    STRATEGY_TYPES,
    BuiltIn,
    CleanRetry,
    Command,
    CommandSequence,
    Custom,
    EnvironmentFix,
    ErrorCategory,
    ErrorPattern,
    ErrorSeverity,
    FixStrategy,
    ForceOverwrite,
    MatchLocation,
    PatternMatcher,
    Rebuild,
    Reconfigure,
    RiskLevel,
    UpdateComponent,
)
from .suggestions import risk_for_strategy

logger = logging.getLogger(__name__)

PATTERNS_DIR = Path(__file__).parent / "patterns"

# Load order defines the stable repository order
BUNDLED_FAMILIES = ("arch", "debian", "fedora", "common")


class PatternLoadError(ValueError):
    """Raised when a rule definition is invalid."""

    def __init__(self, message: str, pattern_id: str | None = None, source: str | None = None):
        self.detail = message
        self.pattern_id = pattern_id
        self.source = source
        prefix = ""
        if source:
            prefix += f"{source}: "
        if pattern_id:
            prefix += f"pattern '{pattern_id}': "
        super().__init__(prefix + message)


@dataclass
class RepositoryStats:
    """Summary of the loaded rule set."""

    total_patterns: int
    by_family: dict[str, int]
    by_category: dict[str, int]
    average_success_rate: float


# =============================================================================
# PARSING
# =============================================================================


def _as_args(value: Any, what: str, pattern_id: str | None) -> tuple[str, ...]:
    if not isinstance(value, list) or not value:
        raise PatternLoadError(f"{what} must be a non-empty list of arguments", pattern_id)
    args = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int)):
            raise PatternLoadError(f"{what} contains a non-string argument: {item!r}", pattern_id)
        args.append(str(item))
    return tuple(args)


def _as_command_list(value: Any, what: str, pattern_id: str | None) -> tuple[tuple[str, ...], ...]:
    if not isinstance(value, list) or not value:
        raise PatternLoadError(f"{what} must be a non-empty list of commands", pattern_id)
    return tuple(_as_args(cmd, what, pattern_id) for cmd in value)


def _require_str(value: Any, what: str, pattern_id: str | None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise PatternLoadError(f"{what} must be a non-empty string", pattern_id)
    return value


def parse_strategy(data: Any, pattern_id: str | None = None) -> FixStrategy:
    """Build a FixStrategy from its rule-file mapping (exactly one key)."""
    if not isinstance(data, dict) or len(data) != 1:
        raise PatternLoadError("fix must be a mapping with exactly one strategy key", pattern_id)

    kind, body = next(iter(data.items()))

    if kind == "command":
        return Command(_as_args(body, "command", pattern_id))
    if kind == "sequence":
        return CommandSequence(_as_command_list(body, "sequence", pattern_id))
    if kind == "builtin":
        return BuiltIn(_require_str(body, "builtin", pattern_id))
    if kind == "custom":
        return Custom(_require_str(body, "custom", pattern_id))

    if not isinstance(body, dict):
        raise PatternLoadError(f"'{kind}' strategy needs a mapping body", pattern_id)

    if kind == "rebuild":
        return Rebuild(_require_str(body.get("package"), "rebuild.package", pattern_id))
    if kind == "force_overwrite":
        return ForceOverwrite(_as_args(body.get("patterns"), "force_overwrite.patterns", pattern_id))
    if kind == "clean_retry":
        return CleanRetry(
            clean_commands=_as_command_list(
                body.get("clean_commands"), "clean_retry.clean_commands", pattern_id
            ),
            retry_original=bool(body.get("retry_original", True)),
        )
    if kind == "update_component":
        return UpdateComponent(
            _require_str(body.get("component"), "update_component.component", pattern_id)
        )
    if kind == "reconfigure":
        return Reconfigure(_require_str(body.get("service"), "reconfigure.service", pattern_id))
    if kind == "environment":
        variables = body.get("variables")
        if not isinstance(variables, dict) or not variables:
            raise PatternLoadError("environment.variables must be a non-empty mapping", pattern_id)
        return EnvironmentFix(
            variables=tuple((str(k), str(v)) for k, v in variables.items()),
            permanent=bool(body.get("permanent", False)),
        )

    raise PatternLoadError(f"unknown fix strategy '{kind}'", pattern_id)


def parse_matcher(data: Any, pattern_id: str | None = None) -> PatternMatcher:
    if not isinstance(data, dict):
        raise PatternLoadError("matcher must be a mapping", pattern_id)

    if "exit_code" in data:
        code = data["exit_code"]
        if isinstance(code, bool) or not isinstance(code, int):
            raise PatternLoadError(f"exit_code must be an integer, got {code!r}", pattern_id)
        return PatternMatcher.exit_code_equals(code)

    regex = _require_str(data.get("regex"), "matcher regex", pattern_id)
    try:
        location = MatchLocation(data.get("location", MatchLocation.STDERR.value))
    except ValueError:
        raise PatternLoadError(f"unknown matcher location {data.get('location')!r}", pattern_id)
    if location == MatchLocation.EXIT_CODE:
        raise PatternLoadError("exit_code matchers need an 'exit_code' value", pattern_id)

    captures = data.get("capture", [])
    if not isinstance(captures, list) or not all(isinstance(c, str) for c in captures):
        raise PatternLoadError("capture must be a list of names", pattern_id)

    return PatternMatcher(regex=regex, location=location, capture_groups=tuple(captures))


def parse_pattern(
    data: Any,
    family: str = "common",
    defaults: dict[str, Any] | None = None,
) -> ErrorPattern:
    """Build an ErrorPattern from one rule-file entry.

    Validation happens in ``compile_pattern``; this only checks shape.
    """
    if not isinstance(data, dict):
        raise PatternLoadError("pattern entry must be a mapping")
    defaults = defaults or {}

    pattern_id = _require_str(data.get("id"), "id", None)

    try:
        category = ErrorCategory(data.get("category"))
    except ValueError:
        raise PatternLoadError(f"unknown category {data.get('category')!r}", pattern_id)
    try:
        severity = ErrorSeverity(data.get("severity"))
    except ValueError:
        raise PatternLoadError(f"unknown severity {data.get('severity')!r}", pattern_id)

    risk_override = None
    if data.get("risk") is not None:
        try:
            risk_override = RiskLevel(data["risk"])
        except ValueError:
            raise PatternLoadError(f"unknown risk level {data['risk']!r}", pattern_id)

    matchers = data.get("matchers")
    if not isinstance(matchers, list):
        raise PatternLoadError("matchers must be a list", pattern_id)

    success_rate = data.get("success_rate")
    if isinstance(success_rate, bool) or not isinstance(success_rate, (int, float)):
        raise PatternLoadError(f"success_rate must be a number, got {success_rate!r}", pattern_id)

    platforms = data.get("platforms", defaults.get("platforms", []))
    package_managers = data.get("package_managers", defaults.get("package_managers", []))

    return ErrorPattern(
        id=pattern_id,
        name=_require_str(data.get("name"), "name", pattern_id),
        description=_require_str(data.get("description"), "description", pattern_id),
        category=category,
        severity=severity,
        matchers=tuple(parse_matcher(m, pattern_id) for m in matchers),
        fix_strategy=parse_strategy(data.get("fix"), pattern_id),
        success_rate=float(success_rate),
        applicable_platforms=frozenset(str(p).lower() for p in platforms),
        applicable_package_managers=frozenset(str(p).lower() for p in package_managers),
        risk_override=risk_override,
        family=family,
    )


# =============================================================================
# VALIDATION
# =============================================================================


def _compile_matcher(matcher: PatternMatcher, pattern_id: str) -> PatternMatcher:
    if matcher.location == MatchLocation.EXIT_CODE:
        if matcher.exit_code is None:
            raise PatternLoadError("exit_code matcher without a code", pattern_id)
        return matcher

    try:
        compiled = re.compile(matcher.regex, re.MULTILINE)
    except re.error as e:
        raise PatternLoadError(f"invalid regex {matcher.regex!r}: {e}", pattern_id) from e

    if len(matcher.capture_groups) > compiled.groups:
        raise PatternLoadError(
            f"{len(matcher.capture_groups)} capture names for {compiled.groups} regex groups "
            f"in {matcher.regex!r}",
            pattern_id,
        )
    return dataclasses.replace(matcher, compiled=compiled)


def _check_risk_override(pattern: ErrorPattern) -> None:
    """Overrides may raise risk freely; the only lowering is a plain Command to Safe."""
    override = pattern.risk_override
    if override is None:
        return
    derived = risk_for_strategy(pattern.fix_strategy)
    if override >= derived:
        return
    if isinstance(pattern.fix_strategy, Command) and override == RiskLevel.SAFE:
        return
    raise PatternLoadError(
        f"risk {override.value!r} is below the {derived.value!r} risk of a "
        f"{pattern.fix_strategy.kind} fix",
        pattern.id,
    )


def compile_pattern(pattern: ErrorPattern) -> ErrorPattern:
    """Validate a pattern and return a copy with precompiled regexes."""
    if not pattern.matchers:
        # A pattern without matchers would match every failure
        raise PatternLoadError("pattern has no matchers", pattern.id)
    if not 0.0 <= pattern.success_rate <= 1.0:
        raise PatternLoadError(
            f"success_rate {pattern.success_rate} is outside [0, 1]", pattern.id
        )
    if not isinstance(pattern.fix_strategy, STRATEGY_TYPES):
        raise PatternLoadError(f"unsupported fix strategy {pattern.fix_strategy!r}", pattern.id)
    _check_risk_override(pattern)

    matchers = tuple(_compile_matcher(m, pattern.id) for m in pattern.matchers)
    return dataclasses.replace(pattern, matchers=matchers)


def load_pattern_file(path: Path) -> list[ErrorPattern]:
    """Parse one YAML rule file."""
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PatternLoadError(f"invalid YAML: {e}", source=str(path)) from e
    except OSError as e:
        raise PatternLoadError(f"cannot read rule file: {e}", source=str(path)) from e

    if not isinstance(document, dict) or not isinstance(document.get("patterns"), list):
        raise PatternLoadError("rule file must contain a 'patterns' list", source=str(path))

    family = str(document.get("family", path.stem))
    defaults = document.get("defaults") or {}

    patterns = []
    for entry in document["patterns"]:
        try:
            patterns.append(parse_pattern(entry, family=family, defaults=defaults))
        except PatternLoadError as e:
            raise PatternLoadError(e.detail, e.pattern_id, str(path)) from e
    return patterns


# =============================================================================
# REPOSITORY
# =============================================================================


class PatternRepository:
    """Read-only, ordered collection of validated error patterns."""

    def __init__(self, patterns: Iterable[ErrorPattern]):
        compiled: list[ErrorPattern] = []
        seen: set[str] = set()
        for pattern in patterns:
            if pattern.id in seen:
                raise PatternLoadError("duplicate pattern id", pattern.id)
            seen.add(pattern.id)
            compiled.append(compile_pattern(pattern))

        self._patterns: tuple[ErrorPattern, ...] = tuple(compiled)
        self._by_id = {p.id: p for p in self._patterns}

    @classmethod
    def from_files(cls, paths: Sequence[Path]) -> "PatternRepository":
        patterns: list[ErrorPattern] = []
        for path in paths:
            patterns.extend(load_pattern_file(Path(path)))
        repository = cls(patterns)
        logger.info("Loaded %d error patterns from %d files", len(repository), len(paths))
        return repository

    @classmethod
    def load_default(cls, extra_dir: Path | None = None) -> "PatternRepository":
        """Load the bundled rule files, then any ``*.yaml`` in ``extra_dir``."""
        paths = [PATTERNS_DIR / f"{family}.yaml" for family in BUNDLED_FAMILIES]
        if extra_dir is not None:
            extra_dir = Path(extra_dir).expanduser()
            if extra_dir.is_dir():
                paths.extend(sorted(extra_dir.glob("*.yaml")))
            else:
                logger.warning("Extra patterns directory not found: %s", extra_dir)
        return cls.from_files(paths)

    def all_patterns(self) -> tuple[ErrorPattern, ...]:
        return self._patterns

    def get(self, pattern_id: str) -> ErrorPattern | None:
        return self._by_id.get(pattern_id)

    def for_platform(self, platform_hint: str | None) -> list[ErrorPattern]:
        return [p for p in self._patterns if p.applies_to_platform(platform_hint)]

    def statistics(self) -> RepositoryStats:
        by_family = Counter(p.family for p in self._patterns)
        by_category = Counter(p.category.value for p in self._patterns)
        average = (
            sum(p.success_rate for p in self._patterns) / len(self._patterns)
            if self._patterns
            else 0.0
        )
        return RepositoryStats(
            total_patterns=len(self._patterns),
            by_family=dict(by_family),
            by_category=dict(by_category),
            average_success_rate=average,
        )

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[ErrorPattern]:
        return iter(self._patterns)


@lru_cache(maxsize=None)
def _cached_default(extra_dir: str | None) -> PatternRepository:
    return PatternRepository.load_default(Path(extra_dir) if extra_dir else None)


def get_default_repository(extra_dir: Path | str | None = None) -> PatternRepository:
    """Return the process-wide repository, built on first use."""
    return _cached_default(str(extra_dir) if extra_dir else None)
