"""Tests for pattern loading and validation."""

import textwrap

import pytest

from pkgrecovery.recovery.models import (
    BuiltIn,
    CleanRetry,
    Command,
    CommandSequence,
    EnvironmentFix,
    ErrorCategory,
    ErrorPattern,
    ErrorSeverity,
    ForceOverwrite,
    PatternMatcher,
    Rebuild,
    RiskLevel,
)
from pkgrecovery.recovery.repository import (
    PatternLoadError,
    PatternRepository,
    compile_pattern,
    load_pattern_file,
    parse_strategy,
)


def _write(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


VALID_RULES = """
    family: custom
    defaults:
      platforms: [ubuntu]
      package_managers: [apt]
    patterns:
      - id: custom_one
        name: One
        description: First rule
        category: package
        severity: high
        matchers:
          - regex: 'broken (\\S+)'
            capture: [package]
        fix:
          rebuild:
            package: '{package}'
        success_rate: 0.8
      - id: custom_two
        name: Two
        description: Second rule
        category: lock
        severity: low
        platforms: [arch]
        matchers:
          - exit_code: 13
        fix:
          builtin: clear_locks
        risk: medium
        success_rate: 0.5
"""


class TestParseStrategy:
    def test_sequence(self):
        strategy = parse_strategy({"sequence": [["apt-get", "update"], ["apt-get", "upgrade"]]})
        assert strategy == CommandSequence((("apt-get", "update"), ("apt-get", "upgrade")))

    def test_clean_retry_defaults_to_retry(self):
        strategy = parse_strategy({"clean_retry": {"clean_commands": [["dnf", "clean", "all"]]}})
        assert isinstance(strategy, CleanRetry)
        assert strategy.retry_original is True

    def test_force_overwrite(self):
        assert parse_strategy({"force_overwrite": {"patterns": ["*"]}}) == ForceOverwrite(("*",))

    def test_environment(self):
        strategy = parse_strategy({"environment": {"variables": {"LANG": "C.UTF-8"}}})
        assert strategy == EnvironmentFix((("LANG", "C.UTF-8"),), False)

    @pytest.mark.parametrize(
        "data",
        [
            {"teleport": "x"},
            {"command": []},
            {"command": ["ok"], "builtin": "two keys"},
            {"rebuild": "not-a-mapping"},
            {"environment": {"variables": {}}},
            "command",
        ],
    )
    def test_invalid_strategies(self, data):
        with pytest.raises(PatternLoadError):
            parse_strategy(data, "bad")


class TestCompilePattern:
    def _pattern(self, matchers, success_rate=0.5, strategy=None, risk=None):
        return ErrorPattern(
            id="p",
            name="p",
            description="p",
            category=ErrorCategory.BUILD,
            severity=ErrorSeverity.LOW,
            matchers=tuple(matchers),
            fix_strategy=strategy or BuiltIn("install_build_tools"),
            success_rate=success_rate,
            risk_override=risk,
        )

    def test_rejects_empty_matchers(self):
        with pytest.raises(PatternLoadError, match="no matchers"):
            compile_pattern(self._pattern([]))

    @pytest.mark.parametrize("rate", [-0.1, 1.5])
    def test_rejects_success_rate_out_of_range(self, rate):
        with pytest.raises(PatternLoadError, match="success_rate"):
            compile_pattern(self._pattern([PatternMatcher("x")], success_rate=rate))

    def test_rejects_bad_regex(self):
        with pytest.raises(PatternLoadError, match="invalid regex"):
            compile_pattern(self._pattern([PatternMatcher("([unclosed")]))

    def test_rejects_more_captures_than_groups(self):
        matcher = PatternMatcher(r"(\w+)", capture_groups=("a", "b"))
        with pytest.raises(PatternLoadError, match="capture names"):
            compile_pattern(self._pattern([matcher]))

    def test_precompiles_regexes(self):
        compiled = compile_pattern(self._pattern([PatternMatcher("^gcc: not found$")]))
        assert compiled.matchers[0].compiled is not None
        assert compiled.matches("", "line one\ngcc: not found\n", 1) == {}

    @pytest.mark.parametrize(
        "strategy,risk",
        [
            (ForceOverwrite(("*",)), RiskLevel.SAFE),
            (ForceOverwrite(("*",)), RiskLevel.MEDIUM),
            (CleanRetry((("yay", "-Scc"),), True), RiskLevel.LOW),
            (Rebuild("{package}"), RiskLevel.SAFE),
        ],
    )
    def test_rejects_risk_below_strategy(self, strategy, risk):
        with pytest.raises(PatternLoadError, match="below"):
            compile_pattern(self._pattern([PatternMatcher("x")], strategy=strategy, risk=risk))

    def test_command_may_be_marked_safe(self):
        pattern = self._pattern(
            [PatternMatcher("x")], strategy=Command(("rm", "-f", "/tmp/x.lck")), risk=RiskLevel.SAFE
        )
        assert compile_pattern(pattern).risk_override == RiskLevel.SAFE

    def test_risk_may_be_raised(self):
        pattern = self._pattern(
            [PatternMatcher("x")], strategy=Command(("dnf", "distro-sync")), risk=RiskLevel.HIGH
        )
        assert compile_pattern(pattern).risk_override == RiskLevel.HIGH


class TestLoadPatternFile:
    def test_defaults_and_overrides(self, tmp_path):
        patterns = load_pattern_file(_write(tmp_path, "custom.yaml", VALID_RULES))

        one, two = patterns
        assert one.family == "custom"
        assert one.applicable_platforms == frozenset({"ubuntu"})
        assert one.applicable_package_managers == frozenset({"apt"})
        assert one.fix_strategy == Rebuild("{package}")
        assert two.applicable_platforms == frozenset({"arch"})
        assert two.risk_override == RiskLevel.MEDIUM
        assert two.matchers[0].exit_code == 13

    def test_invalid_yaml(self, tmp_path):
        path = _write(tmp_path, "broken.yaml", "patterns: [unclosed\n")
        with pytest.raises(PatternLoadError, match="invalid YAML"):
            load_pattern_file(path)

    def test_missing_patterns_list(self, tmp_path):
        with pytest.raises(PatternLoadError, match="'patterns' list"):
            load_pattern_file(_write(tmp_path, "empty.yaml", "family: x\n"))

    def test_error_names_file_and_pattern(self, tmp_path):
        body = VALID_RULES.replace("severity: high", "severity: apocalyptic")
        path = _write(tmp_path, "custom.yaml", body)
        with pytest.raises(PatternLoadError) as excinfo:
            load_pattern_file(path)
        assert excinfo.value.pattern_id == "custom_one"
        assert "custom.yaml" in str(excinfo.value)


class TestPatternRepository:
    def test_rejects_duplicate_ids(self, tmp_path):
        path = _write(tmp_path, "custom.yaml", VALID_RULES)
        with pytest.raises(PatternLoadError, match="duplicate"):
            PatternRepository.from_files([path, path])

    def test_one_bad_rule_rejects_everything(self, tmp_path):
        body = VALID_RULES.replace("success_rate: 0.5", "success_rate: 5")
        with pytest.raises(PatternLoadError):
            PatternRepository.from_files([_write(tmp_path, "custom.yaml", body)])

    def test_extra_directory_is_appended(self, tmp_path):
        _write(tmp_path, "custom.yaml", VALID_RULES)
        bundled = PatternRepository.load_default()
        extended = PatternRepository.load_default(extra_dir=tmp_path)
        assert len(extended) == len(bundled) + 2
        assert extended.all_patterns()[-1].id == "custom_two"

    def test_extra_rule_cannot_make_forced_overwrite_safe(self, tmp_path):
        _write(
            tmp_path,
            "overwrite.yaml",
            """
            family: custom
            patterns:
              - id: custom_overwrite
                name: Overwrite
                description: Conflicting files
                category: package
                severity: high
                matchers:
                  - regex: 'exists in filesystem'
                fix:
                  force_overwrite:
                    patterns: ['*']
                risk: safe
                success_rate: 0.99
            """,
        )
        with pytest.raises(PatternLoadError, match="custom_overwrite"):
            PatternRepository.load_default(extra_dir=tmp_path)

    def test_lookup_and_platform_filter(self, repository):
        assert repository.get("arch_db_locked").category == ErrorCategory.LOCK
        assert repository.get("does_not_exist") is None

        arch_ids = {p.id for p in repository.for_platform("arch")}
        assert "arch_db_locked" in arch_ids
        assert "common_disk_full" in arch_ids
        assert "debian_lock_held" not in arch_ids


class TestBundledRules:
    def test_bundled_rules_load(self, repository):
        assert len(repository) > 30
        ids = [p.id for p in repository]
        assert len(ids) == len(set(ids))

    def test_statistics(self, repository):
        stats = repository.statistics()
        assert stats.total_patterns == len(repository)
        assert set(stats.by_family) == {"arch", "debian", "fedora", "common"}
        assert sum(stats.by_category.values()) == stats.total_patterns
        assert 0.0 < stats.average_success_rate <= 1.0

    def test_repository_order_follows_families(self, repository):
        families = [p.family for p in repository]
        assert families.index("arch") < families.index("debian") < families.index("fedora")
        assert families[-1] == "common"

    def test_every_rule_is_well_formed(self, repository):
        for pattern in repository:
            assert pattern.matchers, pattern.id
            assert 0.0 <= pattern.success_rate <= 1.0, pattern.id
