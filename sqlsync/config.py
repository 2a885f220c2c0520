"""Load and validate ``sqlsync.yaml``."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_FILENAME = "sqlsync.yaml"
DEFAULT_STATE_FILENAME = "sqlsync-state.json"
DEFAULT_OUTPUT_DIR = "migrations"

FOLDER_KEYS = ("order", "orderedSubdirectoryFileOrder")
ROOT_KEYS = ("config", "sources")


@dataclasses.dataclass(frozen=True)
class FolderConfig:
    order: tuple[str, ...] = ()
    ordered_subdirectory_file_order: tuple[str, ...] = ()
    children: dict[str, FolderConfig] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class SqlSyncConfig:
    base_dir: Path
    output_dir: Path
    state_file: Path
    sources: dict[str, FolderConfig]


def _string_list(value: Any, where: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ConfigError(f'"{where}" should be a list')
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f'Each item in "{where}" should be a string, got {item!r}')
    return tuple(value)


def parse_folder_config(raw: Any, where: str) -> FolderConfig:
    if raw is None:
        return FolderConfig()
    if not isinstance(raw, dict):
        raise ConfigError(f'"{where}" should be a mapping')
    order = _string_list(raw["order"], f"{where}.order") if "order" in raw else ()
    file_order = ()
    if "orderedSubdirectoryFileOrder" in raw:
        file_order = _string_list(raw["orderedSubdirectoryFileOrder"], f"{where}.orderedSubdirectoryFileOrder")
    children = {
        str(key): parse_folder_config(value, f"{where}.{key}")
        for key, value in raw.items()
        if key not in FOLDER_KEYS
    }
    return FolderConfig(order=order, ordered_subdirectory_file_order=file_order, children=children)


def parse_config(raw: Any, base_dir: Path) -> SqlSyncConfig:
    """Validate an already-parsed YAML document."""
    if not isinstance(raw, dict):
        raise ConfigError("Expected a mapping at the top level")

    settings = raw.get("config") or {}
    if not isinstance(settings, dict):
        raise ConfigError('"config" should be a mapping')

    output_dir = DEFAULT_OUTPUT_DIR
    if "migrations" in settings:
        migrations = settings["migrations"]
        if not isinstance(migrations, dict):
            raise ConfigError('"config.migrations" should be a mapping')
        output_dir = migrations.get("outputDir")
        if not output_dir or not isinstance(output_dir, str):
            raise ConfigError('"config.migrations.outputDir" is required')

    state_file = settings.get("stateFile", DEFAULT_STATE_FILENAME)
    if not isinstance(state_file, str) or not state_file:
        raise ConfigError('"config.stateFile" should be a non-empty string')

    sources: dict[str, FolderConfig] = {}
    declared = raw.get("sources") or {}
    if not isinstance(declared, dict):
        raise ConfigError('"sources" should be a mapping')
    for name, value in declared.items():
        if not isinstance(value, dict):
            raise ConfigError(f'Source "{name}" should be a mapping')
        if not isinstance(value.get("order"), list):
            raise ConfigError(f'"sources.{name}.order" should be a list')
        sources[str(name)] = parse_folder_config(value, f"sources.{name}")
    # Folder configs may also sit at the top level next to "config".
    for name, value in raw.items():
        if name in ROOT_KEYS:
            continue
        if name in sources:
            raise ConfigError(f'Source "{name}" is configured twice')
        sources[str(name)] = parse_folder_config(value, str(name))

    return SqlSyncConfig(
        base_dir=base_dir,
        output_dir=base_dir / output_dir,
        state_file=base_dir / state_file,
        sources=sources,
    )


def load_config(path: Path) -> SqlSyncConfig:
    if not path.exists():
        raise ConfigError(f"Configuration file not found at {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Error parsing YAML file {path}: {exc}") from exc
    try:
        return parse_config(raw, path.resolve().parent)
    except ConfigError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc
