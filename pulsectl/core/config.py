"""Configuration loading and validation for YAML-based pulsectl settings."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from pulsectl.core.errors import ConfigLoadError, ConfigValidationError
from pulsectl.core.model import Permission, PermissionSettings, SessionConfig

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedConfig:
    config: SessionConfig
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("pulsectl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "pulsectl/config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build_config(doc: dict[str, Any], sources: str) -> tuple[SessionConfig, list[str]]:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {sources}{where}: {exc.message}") from exc

    warnings: list[str] = []
    perms = doc.get("permissions", {})
    platform = perms.get("platform", "auto")
    api_level = perms.get("api_level")
    if platform == "android" and api_level is None:
        warning = "permissions.platform is 'android' without api_level; using the pre-31 location permission"
        LOGGER.warning(warning)
        warnings.append(warning)

    defaults = SessionConfig()
    config = SessionConfig(
        scan_timeout_s=float(doc.get("scan_timeout_s", defaults.scan_timeout_s)),
        connect_timeout_s=float(doc.get("connect_timeout_s", defaults.connect_timeout_s)),
        adapter_poll_interval_s=float(doc.get("adapter_poll_interval_s", defaults.adapter_poll_interval_s)),
        log_level=doc.get("log_level", defaults.log_level),
        permissions=PermissionSettings(
            platform=platform,
            api_level=api_level,
            threshold=int(perms.get("threshold", defaults.permissions.threshold)),
            granted=tuple(Permission(name) for name in perms.get("granted", [p.value for p in Permission])),
        ),
    )
    return config, warnings


def load_config(path: Path | None = None) -> LoadedConfig:
    """Load packaged defaults, overlaid by `path` or the user config file.

    An explicit `path` must exist; the implicit user file is optional.
    """
    packaged = resources.files("pulsectl.defaults").joinpath("config.yaml")
    doc = _read_yaml(packaged)
    sources = [str(packaged)]

    override_path = path if path is not None else user_config_path()
    if path is not None and not path.is_file():
        raise ConfigLoadError(f"Config file {path} does not exist")
    if override_path.is_file():
        doc = _merge(doc, _read_yaml(override_path))
        sources.append(str(override_path))
        LOGGER.debug("Loaded user config from %s", override_path)

    config, warnings = _build_config(doc, " + ".join(sources))
    return LoadedConfig(config=config, warnings=tuple(warnings))
