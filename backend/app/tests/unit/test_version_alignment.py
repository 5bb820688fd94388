"""Tests for version resolution from pyproject.toml."""

import importlib.util
from importlib.metadata import PackageNotFoundError
from pathlib import Path
from unittest.mock import patch


# Load settings module directly to avoid the import chain
_settings_path = Path(__file__).resolve().parents[2] / "settings.py"
_spec = importlib.util.spec_from_file_location("settings_mod", _settings_path)
_settings_mod = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(_settings_mod)

_get_version = _settings_mod._get_version


class TestGetVersion:
    """Tests for _get_version() in settings.py."""

    def test_reads_from_pyproject_toml(self):
        """_get_version should return a valid semver-like string from pyproject.toml."""
        version = _get_version()
        assert version != "0.0.0", "Should read version from pyproject.toml"
        parts = version.split(".")
        assert len(parts) >= 2, f"Version should be semver-like, got: {version}"

    def test_returns_current_version(self):
        """_get_version should return the current version from pyproject.toml."""
        import tomllib
        toml_path = Path(__file__).resolve().parents[4] / "pyproject.toml"
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        expected = data["project"]["version"]
        assert _get_version() == expected

    def test_uses_toml_when_not_installed(self):
        """Without package metadata the version comes from pyproject.toml."""
        with patch("importlib.metadata.version", side_effect=PackageNotFoundError("chatbridge")):
            assert _get_version() != "0.0.0"

    def test_fallback_when_nothing_readable(self):
        """_get_version returns 0.0.0 when neither metadata nor pyproject.toml is available."""
        with patch("importlib.metadata.version", side_effect=PackageNotFoundError("chatbridge")), \
                patch("builtins.open", side_effect=FileNotFoundError):
            assert _get_version() == "0.0.0"
