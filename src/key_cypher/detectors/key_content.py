"""Private keys hiding in extension-less files, found by content."""

from __future__ import annotations

import os
from pathlib import Path

from key_cypher.core.base import CatalogEntry
from key_cypher.detectors.walk import (
    MAX_CONTENT_BYTES,
    BlockingDetector,
    key_patterns,
    walk_files,
)

DEFAULT_MAX_DEPTH = 2


def contains_private_key(path: Path) -> bool:
    """True if the file content matches any private-key marker."""
    try:
        content = path.read_bytes()[:MAX_CONTENT_BYTES].decode("utf-8", errors="ignore")
    except OSError:
        return False
    return any(pattern.search(content) for pattern in key_patterns())


class ContentSniffScan(BlockingDetector):
    """Depth-bounded walk that opens small extension-less files.

    The depth bound keeps the cost of reading file contents predictable;
    keys deeper than that are only found by the name-based detectors.
    """

    name = "ssh_key_content"
    description = "Extension-less files whose content looks like a private key"

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max_depth

    def collect(self, root: Path) -> list[CatalogEntry]:
        entries: list[CatalogEntry] = []
        for path, st in walk_files(root, max_depth=self.max_depth):
            if os.path.splitext(path.name)[1]:
                continue
            if st.st_size > MAX_CONTENT_BYTES:
                continue
            if contains_private_key(path):
                entries.append(CatalogEntry.from_path(path, detected_by=self.name))
        return entries
