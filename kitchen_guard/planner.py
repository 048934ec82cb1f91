"""Action planning: turn a classification into an ordered list of kitchen actions.

Precedence for change-driven requests (first match wins, evaluated in order):
1. Configuration changed or never loaded -> reload first (independent of 2/3)
2. Suites affected -> verify exactly those suites
3. Otherwise -> converge everything, then verify everything
"""

import re
from dataclasses import dataclass
from typing import Iterable

from .classifier import ClassifyResult
from .config import ActionKind, Options


ALL_SUITES_LABEL = "all suites"
ALL_SUITES_PATTERN = ".*"

# Kitchen names instances <suite>-<platform>, turning "_", "," and "/" into "-"
# and dropping "."
_INSTANCE_NAME_SEPARATORS = re.compile(r"[_,/]")


@dataclass(frozen=True)
class SuiteFilter:
    """Which suites an action targets: all of them, or a non-empty subset.

    Build instances with SuiteFilter.all() or SuiteFilter.subset(...).
    """
    suites: tuple[str, ...] = ()

    @classmethod
    def all(cls) -> "SuiteFilter":
        return cls()

    @classmethod
    def subset(cls, suites: Iterable[str]) -> "SuiteFilter":
        """Create a filter for specific suites (order kept, duplicates dropped).

        Raises:
            ValueError: If no suite names are given
        """
        names = tuple(dict.fromkeys(suites))
        if not names:
            raise ValueError("A suite subset must name at least one suite")
        return cls(suites=names)

    @property
    def is_all(self) -> bool:
        return not self.suites

    @property
    def label(self) -> str:
        return ALL_SUITES_LABEL if self.is_all else ", ".join(self.suites)

    @property
    def pattern(self) -> str:
        """Instance regex for kitchen; instances are named <suite>-<platform>."""
        if self.is_all:
            return ALL_SUITES_PATTERN
        return "(" + "|".join(re.escape(instance_prefix(name)) for name in self.suites) + ")-.+"


def instance_prefix(suite_name: str) -> str:
    """The part of a kitchen instance name contributed by a suite."""
    return _INSTANCE_NAME_SEPARATORS.sub("-", suite_name).replace(".", "")


@dataclass(frozen=True)
class PlanStep:
    kind: ActionKind
    filter: SuiteFilter
    concurrency: int


@dataclass(frozen=True)
class Plan:
    """Ordered actions for one orchestration request.

    Attributes:
        reload: Reload the kitchen configuration before the first step
        steps: Actions to run in order
        skipped: Nothing runs and a Skipped outcome is reported instead
    """
    reload: bool
    steps: tuple[PlanStep, ...] = ()
    skipped: bool = False


def resolve_concurrency(kind: ActionKind, options: Options) -> int:
    """Concurrency for an action: 1 for non-concurrent stages, else the configured level."""
    if kind in options.non_concurrent_stages:
        return 1
    return options.concurrency_level


def _step(kind: ActionKind, suite_filter: SuiteFilter, options: Options) -> PlanStep:
    return PlanStep(kind=kind, filter=suite_filter, concurrency=resolve_concurrency(kind, options))


def plan_changes(result: ClassifyResult, config_is_loaded: bool, options: Options) -> Plan:
    """Plan the reaction to a batch of changed files."""
    reload = result.config_changed or not config_is_loaded

    if result.affected_suites:
        steps = (_step(ActionKind.VERIFY, SuiteFilter.subset(result.affected_suites), options),)
    else:
        steps = (
            _step(ActionKind.CONVERGE, SuiteFilter.all(), options),
            _step(ActionKind.VERIFY, SuiteFilter.all(), options),
        )

    return Plan(reload=reload, steps=steps)


def plan_run_all(config_is_loaded: bool, options: Options) -> Plan:
    return Plan(
        reload=not config_is_loaded,
        steps=(_step(ActionKind.VERIFY, SuiteFilter.all(), options),),
    )


def plan_start(options: Options) -> Plan:
    # Start always picks up the configuration from disk
    return Plan(reload=True, steps=(_step(ActionKind.CREATE, SuiteFilter.all(), options),))


def plan_stop(config_is_loaded: bool, options: Options) -> Plan:
    if not options.destroy_on_exit:
        return Plan(reload=False, skipped=True)
    return Plan(
        reload=not config_is_loaded,
        steps=(_step(ActionKind.DESTROY, SuiteFilter.all(), options),),
    )
