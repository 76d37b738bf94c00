"""Tests for the recovery orchestrator."""

import pytest
from conftest import RecordingRunner, ScriptedPrompt, fail, ok

from pkgrecovery.config import RecoveryConfig
from pkgrecovery.recovery.fixer import FixInterpreter
from pkgrecovery.recovery.last_error import LastErrorRecord, LastErrorStore
from pkgrecovery.recovery.models import FixStatus
from pkgrecovery.recovery.orchestrator import RecoveryOrchestrator, package_manager_from_command
from pkgrecovery.recovery.risk import RiskGate

PACMAN_LOCK = "error: could not lock database: File exists"
APT_LOCK = "E: Could not get lock /var/lib/dpkg/lock-frontend"


@pytest.fixture
def store(tmp_path):
    return LastErrorStore(tmp_path / "last_error.json")


def _orchestrator(repository, store, runner, platform="arch", prompt=None, **config):
    return RecoveryOrchestrator(
        config=RecoveryConfig(**config),
        repository=repository,
        interpreter=FixInterpreter(runner=runner, platform_hint=platform, is_root=False),
        store=store,
        gate=RiskGate(prompt or ScriptedPrompt()),
        platform_hint=platform,
        runner=runner,
    )


@pytest.mark.parametrize(
    "command,expected",
    [
        ("sudo apt-get install vim", "apt-get"),
        ("sudo -E DEBIAN_FRONTEND=noninteractive apt install -y vim", "apt"),
        ("/usr/bin/pacman -S vim", "pacman"),
        ("pip install 'requests>=2'", "pip"),
        ("make install", None),
        ("", None),
    ],
)
def test_package_manager_from_command(command, expected):
    assert package_manager_from_command(command) == expected


class TestHandleFailure:
    def test_success_is_ignored(self, repository, store, runner):
        report = _orchestrator(repository, store, runner).handle_failure("pacman -Syu", "done", "", 0)
        assert not report.matched
        assert not store.exists()

    def test_auto_fix_recovers_and_clears_record(self, repository, store, runner):
        orchestrator = _orchestrator(repository, store, runner)

        report = orchestrator.handle_failure("pacman -S vim", "", PACMAN_LOCK, 1)

        assert report.recovered
        assert report.analyses[0].pattern.id == "arch_db_locked"
        assert runner.calls == [["sudo", "-n", "rm", "-f", "/var/lib/pacman/db.lck"]]
        assert not store.exists()

    def test_failed_auto_fix_keeps_record(self, repository, store):
        runner = RecordingRunner(default=fail(1, "sudo: a password is required"))
        report = _orchestrator(repository, store, runner).handle_failure(
            "pacman -S vim", "", PACMAN_LOCK, 1
        )

        assert not report.recovered
        assert report.attempts[0].outcome.status == FixStatus.FAILED
        assert store.load().stderr == PACMAN_LOCK

    def test_success_with_warnings_keeps_previous_record(self, repository, store, runner):
        store.save(LastErrorRecord(command="pacman -S vim", exit_code=1, stdout="", stderr=PACMAN_LOCK))

        report = _orchestrator(repository, store, runner).handle_failure(
            "pacman -Syu", "", "warning: vim-9.1 is up to date -- skipping", 0
        )

        assert not report.matched
        assert store.load().command == "pacman -S vim"
        assert runner.calls == []

    @pytest.mark.parametrize("helper", ["yay", "paru"])
    def test_aur_helper_surfaces_pacman_errors(self, repository, store, runner, helper):
        report = _orchestrator(repository, store, runner).handle_failure(
            f"{helper} -S vim", "", PACMAN_LOCK, 1
        )

        assert report.recovered
        assert report.analyses[0].pattern.id == "arch_db_locked"
        assert runner.calls == [["sudo", "-n", "rm", "-f", "/var/lib/pacman/db.lck"]]

    def test_auto_fix_disabled(self, repository, store, runner):
        report = _orchestrator(repository, store, runner, auto_fix=False).handle_failure(
            "pacman -S vim", "", PACMAN_LOCK, 1
        )
        assert report.matched and not report.attempts
        assert runner.calls == []
        assert store.exists()

    def test_low_confidence_is_not_auto_fixed(self, repository, store, runner):
        report = _orchestrator(repository, store, runner, platform="ubuntu").handle_failure(
            "apt-get install vim", "", APT_LOCK, 100
        )
        assert report.analyses[0].confidence < 0.9
        assert report.attempts == []
        assert runner.calls == []
        assert store.exists()

    def test_unmatched_failure_is_still_recorded(self, repository, store, runner):
        report = _orchestrator(repository, store, runner).handle_failure(
            "pacman -S vim", "", "something nobody has seen before", 1
        )
        assert not report.matched
        assert store.load().command == "pacman -S vim"

    def test_retry_with_sudo_reruns_original_command(self, repository, store):
        runner = RecordingRunner({("sudo", "-n", "apt-get"): ok()})
        report = _orchestrator(repository, store, runner, platform="ubuntu").handle_failure(
            "apt-get install vim", "", "E: Permission denied", 100
        )

        assert report.recovered
        assert runner.calls == [["sudo", "-n", "apt-get", "install", "vim"]]
        assert not store.exists()

    def test_retry_that_still_fails(self, repository, store):
        runner = RecordingRunner(default=fail(100, "E: Permission denied"))
        report = _orchestrator(repository, store, runner, platform="ubuntu").handle_failure(
            "apt-get install vim", "", "E: Permission denied", 100
        )

        assert not report.recovered
        assert "still fails" in report.attempts[0].outcome.message
        assert store.exists()

    def test_retry_needing_sudo_when_sudo_is_disabled(self, repository, store, runner):
        report = _orchestrator(
            repository, store, runner, platform="ubuntu", use_sudo=False
        ).handle_failure("apt-get install vim", "", "E: Permission denied", 100)

        assert not report.recovered
        assert runner.calls == []


class TestAnalyzeLastError:
    def _save(self, store, stderr=APT_LOCK, command="apt-get install vim", exit_code=100):
        store.save(LastErrorRecord(command, exit_code, "", stderr))

    def test_no_record(self, repository, store, runner):
        assert _orchestrator(repository, store, runner).analyze_last_error() is None

    def test_interactive_applies_first_fix(self, repository, store, runner):
        self._save(store)
        report = _orchestrator(repository, store, runner, platform="ubuntu").analyze_last_error()

        assert report.recovered
        assert len(report.attempts) == 1
        assert runner.calls[-1] == ["sudo", "dpkg", "--configure", "-a"]
        assert all(call[:2] == ["sudo", "rm"] for call in runner.calls[:-1])
        assert not store.exists()

    def test_dry_run_executes_nothing(self, repository, store, runner):
        self._save(store)
        report = _orchestrator(repository, store, runner, platform="ubuntu").analyze_last_error(
            dry_run=True
        )

        assert runner.calls == []
        assert not report.recovered
        assert {a.outcome.status for a in report.attempts} == {FixStatus.DESCRIBED}
        assert len(report.attempts) == 2
        assert store.exists()

    def test_declined_fix_falls_through_to_next(self, repository, store, runner):
        self._save(store, stderr="E: Could not get lock /var/lib/dpkg/lock", command="apt-get upgrade")
        prompt = ScriptedPrompt(confirm=False)
        orchestrator = _orchestrator(repository, store, runner, platform="ubuntu", prompt=prompt)
        runner.default = fail(1)

        report = orchestrator.analyze_last_error()

        statuses = [a.outcome.status for a in report.attempts]
        assert statuses == [FixStatus.FAILED, FixStatus.DECLINED]
        assert prompt.asked
        assert store.exists()

    def test_auto_mode_skips_medium_risk(self, repository, store, runner):
        self._save(store)
        runner.default = fail(1)
        report = _orchestrator(repository, store, runner, platform="ubuntu").analyze_last_error(
            auto=True
        )

        statuses = [a.outcome.status for a in report.attempts]
        assert statuses == [FixStatus.FAILED, FixStatus.DECLINED]


class TestRunAndRecover:
    def test_successful_command(self, repository, store):
        runner = RecordingRunner(default=ok("all good\n"))
        assert _orchestrator(repository, store, runner).run_and_recover(["pacman", "-Syu"]) == 0
        assert not store.exists()

    def test_recovered_command_returns_zero(self, repository, store):
        runner = RecordingRunner(
            {
                ("pacman",): fail(1, PACMAN_LOCK),
                ("sudo", "-n", "rm"): ok(),
            }
        )
        assert _orchestrator(repository, store, runner).run_and_recover(["pacman", "-S", "vim"]) == 0

    def test_unrecovered_command_keeps_exit_code(self, repository, store):
        runner = RecordingRunner(default=fail(42, "mystery failure"))
        assert _orchestrator(repository, store, runner).run_and_recover(["pacman", "-S", "vim"]) == 42
        assert store.load().command == "pacman -S vim"
