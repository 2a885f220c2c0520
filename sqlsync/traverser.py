"""Walk the configured source folders in their declared order."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Callable

from .config import FolderConfig, SqlSyncConfig
from .file_processor import process_path
from .models import ProcessedFile

Tracer = Callable[[str], None]


def _ordered_items(directory: Path, order: tuple[str, ...], trace: Tracer | None) -> list[Path]:
    items: list[Path] = []
    seen: set[str] = set()
    for name in order:
        candidate = directory / name
        if name in seen:
            continue
        if not candidate.exists():
            if trace:
                trace(f"{candidate} is listed in the config but does not exist, skipping")
            continue
        seen.add(name)
        items.append(candidate)

    for child in sorted(directory.iterdir(), key=lambda p: p.name):
        if child.name in seen or child.name.startswith("."):
            continue
        if child.is_dir() or child.suffix == ".sql":
            items.append(child)
    return items


def walk_folder(
    base_dir: Path,
    relative_dir: str,
    folder: FolderConfig,
    file_order: tuple[str, ...] = (),
    trace: Tracer | None = None,
) -> list[str]:
    """Relative paths of the .sql files under ``relative_dir``, in processing order.

    ``file_order`` is the enclosing folder's ``orderedSubdirectoryFileOrder``
    and applies when this folder has no ``order`` of its own.
    """
    directory = base_dir / relative_dir
    order = folder.order or file_order
    paths: list[str] = []
    for item in _ordered_items(directory, order, trace):
        relative = str(PurePosixPath(relative_dir, item.name))
        if item.is_dir():
            child = folder.children.get(item.name, FolderConfig())
            paths.extend(walk_folder(base_dir, relative, child, folder.ordered_subdirectory_file_order, trace))
        elif item.suffix == ".sql":
            paths.append(relative)
        elif trace:
            trace(f"{relative} is not a .sql file, skipping")
    return paths


def traverse(config: SqlSyncConfig, trace: Tracer | None = None) -> list[tuple[str, str]]:
    """Ordered (section, relative path) pairs for every configured source."""
    out: list[tuple[str, str]] = []
    for section, folder in config.sources.items():
        if not (config.base_dir / section).is_dir():
            if trace:
                trace(f"source folder {section!r} does not exist, skipping")
            continue
        out.extend((section, path) for path in walk_folder(config.base_dir, section, folder, trace=trace))
    return out


def process_sources(config: SqlSyncConfig, trace: Tracer | None = None) -> list[ProcessedFile]:
    return [process_path(config.base_dir, path, trace) for _, path in traverse(config, trace)]
