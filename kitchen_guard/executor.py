"""Action execution: run one planned step and report its outcome."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .config import ActionKind
from .journal import OutcomeJournal
from .notifier import DEFAULT_TITLE, NotificationImage, NotificationSink
from .planner import SuiteFilter
from .runner import ActionRunner, OperationalFailure, Success, UnexpectedFailure
from .state import ConfigurationState


logger = logging.getLogger(__name__)


class LogSink(Protocol):
    def info(self, message: str) -> None:
        ...


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def image(self) -> NotificationImage:
        return _STATUS_IMAGES[self]


_STATUS_IMAGES = {
    OutcomeStatus.SUCCEEDED: NotificationImage.SUCCESS,
    OutcomeStatus.FAILED: NotificationImage.FAILED,
    OutcomeStatus.SKIPPED: NotificationImage.SKIPPED,
}


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one lifecycle action.

    Attributes:
        kind: Action that ran (or was skipped)
        scope_label: "all suites" or the comma-joined suite names
        status: succeeded, failed or skipped
        detail: Error text for failures; None otherwise
        message: The exact text sent to the log and notification sinks
    """
    kind: ActionKind
    scope_label: str
    status: OutcomeStatus
    detail: Optional[str] = None
    message: str = ""

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED


def _scope_suffix(suite_filter: SuiteFilter) -> str:
    return "" if suite_filter.is_all else f" for: {suite_filter.label}"


class ActionExecutor:
    """Invokes the action runner and reports each outcome exactly once."""

    def __init__(
        self,
        runner: ActionRunner,
        state: ConfigurationState,
        log_sink: LogSink,
        notifier: NotificationSink,
        journal: Optional[OutcomeJournal] = None,
        title: str = DEFAULT_TITLE,
    ):
        self.runner = runner
        self.state = state
        self.log_sink = log_sink
        self.notifier = notifier
        self.journal = journal
        self.title = title

    def execute(self, kind: ActionKind, suite_filter: SuiteFilter, concurrency: int) -> ActionOutcome:
        """Run a single action and report the outcome.

        The configuration must already be loaded; the engine takes care of that.
        An exception raised by the runner is reported as an unexpected failure.
        """
        config = self.state.config
        if config is None:
            raise RuntimeError("Kitchen configuration must be loaded before executing actions")

        action = kind.value
        suffix = _scope_suffix(suite_filter)
        started = time.monotonic()

        try:
            result = self.runner.run(suite_filter.pattern, kind, concurrency, config)
        except Exception as e:
            logger.error(f"Kitchen {action} runner raised: {e}", exc_info=True)
            result = UnexpectedFailure(reason=str(e))

        if isinstance(result, Success):
            outcome = ActionOutcome(
                kind=kind,
                scope_label=suite_filter.label,
                status=OutcomeStatus.SUCCEEDED,
                message=f"Kitchen {action} succeeded{suffix}",
            )
        elif isinstance(result, OperationalFailure):
            outcome = ActionOutcome(
                kind=kind,
                scope_label=suite_filter.label,
                status=OutcomeStatus.FAILED,
                detail=result.message,
                message=f"Kitchen {action} failed{suffix} with {result.message}",
            )
        elif isinstance(result, UnexpectedFailure):
            if result.reason:
                logger.debug(f"Unexpected kitchen failure: {result.reason}")
            known = ", ".join(self.state.list_suite_names()) or "none"
            detail = f"known suites: {known}"
            outcome = ActionOutcome(
                kind=kind,
                scope_label=suite_filter.label,
                status=OutcomeStatus.FAILED,
                detail=detail,
                message=f"Kitchen {action} failed{suffix}; a suite may not exist ({detail})",
            )
        else:
            raise TypeError(f"Unknown run result: {result!r}")

        self.report(outcome, duration_ms=(time.monotonic() - started) * 1000)
        return outcome

    def skip(self, kind: ActionKind) -> ActionOutcome:
        """Report an action that was deliberately not run."""
        outcome = ActionOutcome(
            kind=kind,
            scope_label=SuiteFilter.all().label,
            status=OutcomeStatus.SKIPPED,
            message=f"Kitchen {kind.value} skipped",
        )
        self.report(outcome)
        return outcome

    def report(self, outcome: ActionOutcome, duration_ms: float = 0.0) -> None:
        self.log_sink.info(outcome.message)
        try:
            self.notifier.notify(outcome.message, self.title, outcome.status.image)
        except Exception as e:
            logger.warning(f"Notification failed: {e}", exc_info=True)
        if self.journal is not None:
            self.journal.record(
                outcome.kind.value,
                outcome.scope_label,
                outcome.status.value,
                duration_ms,
                outcome.detail,
            )
