"""Change classification: which suites did a batch of changed paths touch?"""

import re
from dataclasses import dataclass
from typing import Iterable


# test/integration/<suite>/<anything>, anywhere in the path
INTEGRATION_TEST_PATTERN = re.compile(r"(?:^|/)test/integration/([^/]+)/.+")

# Matched against the file name: .kitchen.yml, .kitchen.local.yml, .kitchen.ec2.yml ...
KITCHEN_CONFIG_PATTERN = re.compile(r"\.kitchen.*\.yml")


@dataclass(frozen=True)
class ClassifyResult:
    """Outcome of classifying a batch of changed paths.

    Attributes:
        affected_suites: Suite names in first-seen order, without duplicates
        config_changed: True if any path is a kitchen configuration file
    """
    affected_suites: tuple[str, ...] = ()
    config_changed: bool = False


def classify(paths: Iterable[str]) -> ClassifyResult:
    """Map changed paths to affected suites and a configuration-changed flag.

    Every path is inspected; a configuration change does not stop suite
    collection for the remaining paths.
    """
    suites: dict[str, None] = {}
    config_changed = False

    for path in paths:
        normalized = str(path).replace("\\", "/")

        match = INTEGRATION_TEST_PATTERN.search(normalized)
        if match:
            suites.setdefault(match.group(1), None)

        if KITCHEN_CONFIG_PATTERN.fullmatch(normalized.rsplit("/", 1)[-1]):
            config_changed = True

    return ClassifyResult(affected_suites=tuple(suites), config_changed=config_changed)
