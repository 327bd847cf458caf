from __future__ import annotations

from pathlib import Path

import pytest

from pulsectl.core.config import load_config
from pulsectl.core.errors import ConfigLoadError, ConfigValidationError
from pulsectl.core.model import Permission


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))


def _write_config(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_packaged_defaults() -> None:
    loaded = load_config()
    config = loaded.config
    assert config.scan_timeout_s == 50.0
    assert config.connect_timeout_s == 10.0
    assert config.permissions.platform == "auto"
    assert config.permissions.threshold == 31
    assert set(config.permissions.granted) == set(Permission)
    assert loaded.warnings == ()


def test_user_config_overrides_defaults(tmp_path: Path) -> None:
    _write_config(
        tmp_path / "cfg" / "pulsectl" / "config.yaml",
        """
scan_timeout_s: 20
permissions:
  platform: android
  api_level: 33
  granted: [bluetooth_scan]
""",
    )

    config = load_config().config
    assert config.scan_timeout_s == 20.0
    assert config.connect_timeout_s == 10.0
    assert config.permissions.platform == "android"
    assert config.permissions.api_level == 33
    assert config.permissions.threshold == 31
    assert config.permissions.granted == (Permission.BLUETOOTH_SCAN,)


def test_explicit_path(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "custom.yaml", "log_level: DEBUG\n")
    assert load_config(path).config.log_level == "DEBUG"


def test_missing_explicit_path_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError):
        load_config(tmp_path / "missing.yaml")


def test_empty_user_file_is_allowed(tmp_path: Path) -> None:
    _write_config(tmp_path / "cfg" / "pulsectl" / "config.yaml", "")
    assert load_config().config.scan_timeout_s == 50.0


@pytest.mark.parametrize(
    "content",
    [
        "scan_timeout_s: -1\n",
        "scan_timeout_s: soon\n",
        "bogus_key: 1\n",
        "permissions:\n  platform: amiga\n",
        "permissions:\n  granted: [camera]\n",
        "- just\n- a list\n",
    ],
)
def test_invalid_config_rejected(tmp_path: Path, content: str) -> None:
    path = _write_config(tmp_path / "bad.yaml", content)
    with pytest.raises(ConfigValidationError):
        load_config(path)


def test_duplicate_yaml_keys_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "dup.yaml", "scan_timeout_s: 1\nscan_timeout_s: 2\n")
    with pytest.raises(ConfigValidationError):
        load_config(path)


def test_android_without_api_level_warns(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "android.yaml", "permissions:\n  platform: android\n")
    loaded = load_config(path)
    assert any("api_level" in warning for warning in loaded.warnings)
