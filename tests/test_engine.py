"""Tests for the KitchenGuard orchestration engine.

These drive the public entry points with a fake runner and check which
kitchen actions were requested, in what order, and what was reported.
"""

from pathlib import Path
from unittest.mock import Mock

import pytest
from kitchen_guard.config import ActionKind, FatalConfigurationError, KitchenConfig, Options
from kitchen_guard.engine import KitchenGuard, Phase, RequestResult
from kitchen_guard.executor import OutcomeStatus
from kitchen_guard.planner import Plan, PlanStep, SuiteFilter
from kitchen_guard.runner import OperationalFailure, Success, UnexpectedFailure
from kitchen_guard.state import ConfigurationState


def make_config(*suites):
    return KitchenConfig(
        project_dir=Path("/project"),
        config_path=Path("/project/.kitchen.yml"),
        suites=[{"name": name} for name in suites],
    )


class FakeRunner:
    """Records run() calls and returns queued results (Success by default)."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def run(self, filter_pattern, action_kind, concurrency, config_handle):
        self.calls.append((action_kind, filter_pattern, concurrency))
        return self.results.pop(0) if self.results else Success()


def make_guard(options=None, results=(), suites=("default",), loaded=False):
    loader = Mock(return_value=make_config(*suites))
    state = ConfigurationState(loader=loader)
    if loaded:
        state.reload()
        loader.reset_mock()
    runner = FakeRunner(*results)
    log_sink = Mock()
    notifier = Mock()
    guard = KitchenGuard(
        options=options or Options(),
        state=state,
        runner=runner,
        notifier=notifier,
        log_sink=log_sink,
    )
    return guard, runner, loader, log_sink, notifier


class TestOnFilesChanged:
    """Test cases for reacting to changed files."""

    def test_integration_test_change_with_unloaded_config(self):
        """Test reload then a scoped verify of the changed suite."""
        guard, runner, loader, log_sink, _ = make_guard()

        result = guard.on_files_changed(["test/integration/default/bats/foo.bats"])

        loader.assert_called_once()
        assert runner.calls == [(ActionKind.VERIFY, "(default)-.+", 1)]
        assert len(result.outcomes) == 1
        assert result.outcomes[0].scope_label == "default"
        assert result.outcomes[0].status is OutcomeStatus.SUCCEEDED
        assert result.aborted is False
        log_sink.info.assert_called_once_with("Kitchen verify succeeded for: default")

    def test_recipe_change_converges_and_verifies(self):
        """Test a non-test change runs converge then verify on all suites, no reload."""
        guard, runner, loader, log_sink, notifier = make_guard(loaded=True)

        result = guard.on_files_changed(["recipes/default.rb"])

        loader.assert_not_called()
        assert [call[0] for call in runner.calls] == [ActionKind.CONVERGE, ActionKind.VERIFY]
        assert all(call[1] == ".*" for call in runner.calls)
        assert [o.status for o in result.outcomes] == [OutcomeStatus.SUCCEEDED] * 2
        assert log_sink.info.call_count == 2
        assert notifier.notify.call_count == 2

    def test_config_change_reloads(self):
        """Test a .kitchen.yml change reloads an already loaded configuration."""
        guard, runner, loader, _, _ = make_guard(loaded=True)

        guard.on_files_changed([".kitchen.yml"])

        loader.assert_called_once()
        assert [call[0] for call in runner.calls] == [ActionKind.CONVERGE, ActionKind.VERIFY]

    def test_failure_aborts_remaining_steps(self):
        """Test a failed converge stops the request before verify."""
        guard, runner, _, log_sink, _ = make_guard(
            loaded=True, results=[OperationalFailure("converge failed hard")]
        )

        result = guard.on_files_changed(["recipes/default.rb"])

        assert [call[0] for call in runner.calls] == [ActionKind.CONVERGE]
        assert result.aborted is True
        assert result.outcomes[0].status is OutcomeStatus.FAILED
        assert result.outcomes[0].detail == "converge failed hard"
        log_sink.info.assert_called_once_with("Kitchen converge failed with converge failed hard")

    def test_unknown_suite(self):
        """Test an unexpected failure aborts and names the known suites."""
        guard, _, _, _, _ = make_guard(
            loaded=True, results=[UnexpectedFailure()], suites=("default", "server")
        )

        result = guard.on_files_changed(["test/integration/nosuch/bats/x.bats"])

        assert result.aborted is True
        assert "default, server" in result.outcomes[0].detail

    def test_concurrency_passed_to_runner(self):
        """Test concurrency from options, with exempted stages at 1."""
        options = Options(concurrency_level=4, non_concurrent_stages={ActionKind.CONVERGE})
        guard, runner, _, _, _ = make_guard(options=options, loaded=True)

        guard.on_files_changed(["recipes/default.rb"])

        assert [call[2] for call in runner.calls] == [1, 4]

    def test_fatal_configuration_error_propagates(self):
        """Test a broken configuration escapes and nothing runs."""
        guard, runner, loader, _, _ = make_guard()
        loader.side_effect = FatalConfigurationError("bad yaml")

        with pytest.raises(FatalConfigurationError):
            guard.on_files_changed(["test/integration/default/bats/foo.bats"])

        assert runner.calls == []
        assert guard.phase is Phase.IDLE

    def test_phase_returns_to_idle(self):
        """Test the engine is idle after a request."""
        guard, _, _, _, _ = make_guard(results=[OperationalFailure("x")])

        guard.on_files_changed(["recipes/default.rb"])

        assert guard.phase is Phase.IDLE


class TestLifecycleEntryPoints:
    """Test cases for start, stop, reload and run-all."""

    def test_start_reloads_and_creates(self):
        """Test start always reloads, then creates all instances."""
        guard, runner, loader, log_sink, _ = make_guard(loaded=True)

        result = guard.on_start()

        loader.assert_called_once()
        assert runner.calls == [(ActionKind.CREATE, ".*", 1)]
        log_sink.info.assert_called_once_with("Kitchen create succeeded")
        assert result == RequestResult(outcomes=result.outcomes, aborted=False)

    def test_start_failure(self):
        """Test a failed create is reported and aborts."""
        guard, _, _, _, notifier = make_guard(results=[OperationalFailure("no vagrant")])

        result = guard.on_start()

        assert result.aborted is True
        notifier.notify.assert_called_once()
        assert notifier.notify.call_args[0][0] == "Kitchen create failed with no vagrant"

    def test_stop_destroys(self):
        """Test stop loads the configuration if needed and destroys everything."""
        guard, runner, loader, _, _ = make_guard()

        guard.on_stop()

        loader.assert_called_once()
        assert runner.calls == [(ActionKind.DESTROY, ".*", 1)]

    def test_stop_does_not_reload_when_loaded(self):
        """Test stop keeps an already loaded configuration."""
        guard, _, loader, _, _ = make_guard(loaded=True)

        guard.on_stop()

        loader.assert_not_called()

    def test_stop_skipped_without_destroy_on_exit(self):
        """Test destroy_on_exit=False reports a skip and never runs kitchen."""
        guard, runner, loader, log_sink, notifier = make_guard(options=Options(destroy_on_exit=False))

        result = guard.on_stop()

        assert runner.calls == []
        loader.assert_not_called()
        assert [o.status for o in result.outcomes] == [OutcomeStatus.SKIPPED]
        assert result.aborted is False
        log_sink.info.assert_called_once_with("Kitchen destroy skipped")
        notifier.notify.assert_called_once()

    def test_reload_without_destroy(self):
        """Test reload only re-runs start by default."""
        guard, runner, _, _, _ = make_guard(loaded=True)

        guard.on_reload()

        assert [call[0] for call in runner.calls] == [ActionKind.CREATE]

    def test_reload_with_destroy(self):
        """Test destroy_on_reload destroys before creating."""
        guard, runner, _, _, _ = make_guard(options=Options(destroy_on_reload=True), loaded=True)

        result = guard.on_reload()

        assert [call[0] for call in runner.calls] == [ActionKind.DESTROY, ActionKind.CREATE]
        assert len(result.outcomes) == 2

    def test_reload_stops_when_destroy_fails(self):
        """Test a failed destroy prevents the create."""
        guard, runner, _, _, _ = make_guard(
            options=Options(destroy_on_reload=True), loaded=True, results=[OperationalFailure("stuck")]
        )

        result = guard.on_reload()

        assert [call[0] for call in runner.calls] == [ActionKind.DESTROY]
        assert result.aborted is True

    def test_run_all(self):
        """Test run-all verifies everything and loads lazily."""
        guard, runner, loader, _, _ = make_guard()

        guard.on_run_all()
        guard.on_run_all()

        loader.assert_called_once()
        assert runner.calls == [(ActionKind.VERIFY, ".*", 1)] * 2

    def test_stop_forgets_configuration(self):
        """Test the configuration is dropped after teardown."""
        guard, _, _, _, _ = make_guard(loaded=True)

        guard.on_stop()

        assert guard.state.loaded is False

    def test_execute_loads_configuration_when_plan_skips_reload(self):
        """Test steps never run against an unloaded configuration."""
        guard, runner, loader, _, _ = make_guard()
        plan = Plan(reload=False, steps=(PlanStep(ActionKind.VERIFY, SuiteFilter.all(), 1),))

        result = guard._execute(plan)

        loader.assert_called_once()
        assert runner.calls == [(ActionKind.VERIFY, ".*", 1)]
        assert result.aborted is False


class TestRunnerErrors:
    """Test cases for runners that raise instead of returning a result."""

    def test_runner_exception_aborts_with_reported_failure(self):
        """Test a raising runner yields a failed, notified outcome and aborts the request."""
        guard, _, _, log_sink, notifier = make_guard(loaded=True)
        guard.executor.runner = Mock()
        guard.executor.runner.run.side_effect = UnicodeDecodeError(
            "utf-8", b"converge \xff output", 9, 10, "invalid start byte"
        )

        result = guard.on_files_changed(["recipes/default.rb"])

        assert result.aborted is True
        assert [o.status for o in result.outcomes] == [OutcomeStatus.FAILED]
        log_sink.info.assert_called_once()
        notifier.notify.assert_called_once()
        assert guard.phase is Phase.IDLE
