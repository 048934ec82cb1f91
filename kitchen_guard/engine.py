"""Orchestration engine: the entry points a file watcher calls.

Every entry point classifies (where relevant), reloads the kitchen
configuration when the plan asks for it, then executes the planned steps in
order. A failed step stops the request: the remaining steps are not run and
the returned RequestResult has ``aborted`` set. Only FatalConfigurationError
escapes from an entry point.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from .classifier import classify
from .config import ActionKind, Options
from .executor import ActionExecutor, ActionOutcome, LogSink
from .journal import OutcomeJournal
from .notifier import LogNotifier, NotificationSink
from .planner import Plan, plan_changes, plan_run_all, plan_start, plan_stop
from .runner import ActionRunner, KitchenCommandRunner
from .state import ConfigurationState


logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    CLASSIFYING = "classifying"
    RELOADING = "reloading"
    PLANNING = "planning"
    EXECUTING = "executing"


@dataclass(frozen=True)
class RequestResult:
    """Outcomes of one orchestration request.

    Attributes:
        outcomes: Reported outcomes, in execution order
        aborted: True when a step failed and the rest of the plan was dropped
    """
    outcomes: tuple[ActionOutcome, ...] = ()
    aborted: bool = False

    def __add__(self, other: "RequestResult") -> "RequestResult":
        return RequestResult(self.outcomes + other.outcomes, self.aborted or other.aborted)


class KitchenGuard:
    """Reacts to project changes by running kitchen lifecycle actions."""

    def __init__(
        self,
        options: Optional[Options] = None,
        state: Optional[ConfigurationState] = None,
        runner: Optional[ActionRunner] = None,
        notifier: Optional[NotificationSink] = None,
        log_sink: Optional[LogSink] = None,
        journal: Optional[OutcomeJournal] = None,
    ):
        """Initialize the engine.

        Args:
            options: Plugin options (defaults: concurrency 1, destroy on exit)
            state: Configuration state (default: current directory project)
            runner: Action runner (default: the kitchen command)
            notifier: Notification sink (default: log only)
            log_sink: Receives one message per outcome (default: module logger)
            journal: Optional outcome journal
        """
        self.options = options or Options()
        self.state = state or ConfigurationState()
        self.runner = runner or KitchenCommandRunner(
            command=self.options.kitchen_command,
            timeout=self.options.command_timeout,
        )
        self.log_sink = log_sink or logger
        self.executor = ActionExecutor(
            runner=self.runner,
            state=self.state,
            log_sink=self.log_sink,
            notifier=notifier or LogNotifier(),
            journal=journal,
        )
        self.phase = Phase.IDLE
        self._request_lock = threading.Lock()

    def _log_plugin_info(self, message: str) -> None:
        logger.info(f"Kitchen Guard {message}")

    def on_start(self) -> RequestResult:
        with self._request_lock:
            self._log_plugin_info("is starting")
            return self._run(lambda: plan_start(self.options))

    def on_stop(self) -> RequestResult:
        with self._request_lock:
            try:
                return self._stop()
            finally:
                self.state.clear()

    def _stop(self) -> RequestResult:
        self._log_plugin_info("is stopping")
        plan = self._plan(lambda: plan_stop(self.state.loaded, self.options))
        if plan.skipped:
            self._log_plugin_info("is skipping the destroy step")
            outcome = self.executor.skip(ActionKind.DESTROY)
            self.phase = Phase.IDLE
            return RequestResult(outcomes=(outcome,))
        return self._execute(plan)

    def on_reload(self) -> RequestResult:
        with self._request_lock:
            result = RequestResult()
            if self.options.destroy_on_reload:
                result = self._stop()
                if result.aborted:
                    return result
            self._log_plugin_info("is starting")
            return result + self._run(lambda: plan_start(self.options))

    def on_run_all(self) -> RequestResult:
        with self._request_lock:
            self._log_plugin_info("is running all suites")
            return self._run(lambda: plan_run_all(self.state.loaded, self.options))

    def on_files_changed(self, paths: Iterable[str]) -> RequestResult:
        with self._request_lock:
            self.phase = Phase.CLASSIFYING
            result = classify(paths)
            logger.debug(
                f"Classified changes: suites={list(result.affected_suites)}, "
                f"config_changed={result.config_changed}"
            )
            if result.config_changed:
                self._log_plugin_info("detected a kitchen configuration change")
            return self._run(lambda: plan_changes(result, self.state.loaded, self.options))

    def _plan(self, make_plan) -> Plan:
        self.phase = Phase.PLANNING
        return make_plan()

    def _run(self, make_plan) -> RequestResult:
        return self._execute(self._plan(make_plan))

    def _execute(self, plan: Plan) -> RequestResult:
        outcomes: list[ActionOutcome] = []
        try:
            # The plan decides whether to reload, so Reloading follows Planning
            if plan.reload:
                self.phase = Phase.RELOADING
                self.state.reload()
                self._log_plugin_info("is using the new kitchen configuration")
            else:
                self.state.ensure_loaded()

            self.phase = Phase.EXECUTING
            for step in plan.steps:
                self._log_plugin_info(f"is running {step.kind.value} on {step.filter.label}")
                outcome = self.executor.execute(step.kind, step.filter, step.concurrency)
                outcomes.append(outcome)
                if outcome.failed:
                    logger.debug(f"Aborting request after failed {step.kind.value}")
                    return RequestResult(outcomes=tuple(outcomes), aborted=True)

            return RequestResult(outcomes=tuple(outcomes))
        finally:
            self.phase = Phase.IDLE
