"""Shared traversal for the recursive detectors, plus the scan tables."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from abc import abstractmethod
from collections.abc import Iterator
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from key_cypher.core.base import BaseDetector, CatalogEntry
from key_cypher.core.paths import DATA_DIR

logger = logging.getLogger(__name__)

# Files larger than this are never opened for content inspection.
MAX_CONTENT_BYTES = 1024 * 1024


@lru_cache(maxsize=1)
def load_locations() -> dict[str, Any]:
    path = DATA_DIR / "locations.yaml"
    with open(path) as f:
        return yaml.safe_load(f)


def skip_directories() -> frozenset[str]:
    return frozenset(load_locations()["skip_directories"])


@lru_cache(maxsize=1)
def key_patterns() -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in load_locations()["key_patterns"])


def walk_files(
    root: Path,
    max_depth: int | None = None,
    skip_hidden: bool = False,
    hidden_allowlist: frozenset[str] = frozenset(),
) -> Iterator[tuple[Path, os.stat_result]]:
    """Yield ``(path, stat)`` for every regular file under *root*.

    Depth 0 is *root* itself; with ``max_depth=2`` files two directory
    levels down are still visited. Symlinked directories are not followed
    and every directory is entered at most once. Anything that cannot be
    listed or stat'ed is skipped silently.
    """
    skip = skip_directories()
    visited: set[tuple[int, int]] = set()
    stack: list[tuple[Path, int]] = [(root, 0)]

    while stack:
        directory, depth = stack.pop()
        try:
            st = directory.stat()
        except OSError:
            continue
        ident = (st.st_dev, st.st_ino)
        if ident in visited:
            continue
        visited.add(ident)

        try:
            with os.scandir(directory) as it:
                items = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
            continue

        subdirs: list[Path] = []
        for item in items:
            try:
                if item.is_dir(follow_symlinks=False):
                    if item.name in skip:
                        continue
                    hidden = item.name.startswith(".")
                    if skip_hidden and hidden and item.name not in hidden_allowlist:
                        continue
                    if max_depth is None or depth < max_depth:
                        subdirs.append(Path(item.path))
                elif item.is_file():
                    yield Path(item.path), item.stat()
            except OSError:
                continue

        # Reverse so the stack pops subdirectories in name order.
        stack.extend((d, depth + 1) for d in reversed(subdirs))


class BlockingDetector(BaseDetector):
    """A detector whose work is plain blocking filesystem I/O.

    ``scan`` runs :meth:`collect` in the default executor so a long walk
    never blocks the event loop.
    """

    async def scan(self, root: Path) -> list[CatalogEntry]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.collect, root)

    @abstractmethod
    def collect(self, root: Path) -> list[CatalogEntry]:
        ...
