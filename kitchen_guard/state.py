"""Holds the currently loaded kitchen configuration."""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from .config import KitchenConfig, load_kitchen_config


logger = logging.getLogger(__name__)


class ConfigurationState:
    """Owns the loaded kitchen configuration for one engine instance.

    The configuration is only ever replaced as a whole: reload() loads a
    complete new KitchenConfig and then swaps it in under the lock, so readers
    never see a partially loaded suite list.
    """

    def __init__(
        self,
        project_dir: str | Path = ".",
        loader: Optional[Callable[[], KitchenConfig]] = None,
    ):
        """Initialize an unloaded configuration state.

        Args:
            project_dir: Kitchen project directory used by the default loader
            loader: Callable returning a fresh KitchenConfig. Errors it raises
                (FatalConfigurationError) propagate out of reload().
        """
        self.project_dir = Path(project_dir).expanduser().resolve()
        self._loader = loader or (lambda: load_kitchen_config(self.project_dir))
        self._config: KitchenConfig | None = None
        self._lock = threading.RLock()

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._config is not None

    @property
    def config(self) -> KitchenConfig | None:
        with self._lock:
            return self._config

    def reload(self) -> None:
        """Replace the held configuration with a freshly loaded one."""
        config = self._loader()
        with self._lock:
            self._config = config
        logger.debug(f"Kitchen configuration reloaded: {len(config.suites)} suite(s)")

    def ensure_loaded(self) -> None:
        with self._lock:
            if self._config is None:
                self.reload()

    def list_suite_names(self) -> list[str]:
        with self._lock:
            if self._config is None:
                return []
            return self._config.suite_names

    def clear(self) -> None:
        """Forget the configuration (process teardown)."""
        with self._lock:
            self._config = None
