"""Unit tests for ConfigurationState."""

import pytest
from pathlib import Path
from unittest.mock import Mock
from kitchen_guard.config import FatalConfigurationError, KitchenConfig
from kitchen_guard.state import ConfigurationState


def make_config(*suites):
    return KitchenConfig(
        project_dir=Path("/project"),
        config_path=Path("/project/.kitchen.yml"),
        suites=[{"name": name} for name in suites],
    )


class TestConfigurationState:
    """Test cases for loading and replacing the kitchen configuration."""

    def test_starts_unloaded(self):
        """Test a new state holds no configuration."""
        state = ConfigurationState(loader=Mock())

        assert state.loaded is False
        assert state.config is None
        assert state.list_suite_names() == []

    def test_reload_replaces_config(self):
        """Test reload always loads and swaps in a new configuration."""
        first, second = make_config("a"), make_config("b", "c")
        loader = Mock(side_effect=[first, second])
        state = ConfigurationState(loader=loader)

        state.reload()
        assert state.config is first

        state.reload()
        assert state.config is second
        assert state.list_suite_names() == ["b", "c"]
        assert loader.call_count == 2

    def test_ensure_loaded_only_loads_once(self):
        """Test ensure_loaded is a no-op once loaded."""
        loader = Mock(return_value=make_config("a"))
        state = ConfigurationState(loader=loader)

        state.ensure_loaded()
        state.ensure_loaded()

        loader.assert_called_once()
        assert state.loaded is True

    def test_failed_reload_keeps_previous_config(self):
        """Test a fatal error propagates and leaves the old config in place."""
        good = make_config("a")
        loader = Mock(side_effect=[good, FatalConfigurationError("broken")])
        state = ConfigurationState(loader=loader)
        state.reload()

        with pytest.raises(FatalConfigurationError):
            state.reload()

        assert state.config is good

    def test_clear(self):
        """Test clear returns to the unloaded state."""
        state = ConfigurationState(loader=Mock(return_value=make_config("a")))
        state.reload()

        state.clear()

        assert state.loaded is False

    def test_default_loader_reads_project(self, tmp_path, monkeypatch):
        """Test the default loader reads .kitchen.yml from the project directory."""
        monkeypatch.setenv("KITCHEN_GLOBAL_YAML", str(tmp_path / "none.yml"))
        monkeypatch.delenv("KITCHEN_YAML", raising=False)
        monkeypatch.delenv("KITCHEN_LOCAL_YAML", raising=False)
        (tmp_path / ".kitchen.yml").write_text("suites:\n  - name: default\n")

        state = ConfigurationState(tmp_path)
        state.reload()

        assert state.list_suite_names() == ["default"]
