"""Recursive search for .env* files."""

from __future__ import annotations

from pathlib import Path

from key_cypher.core.base import CatalogEntry
from key_cypher.detectors.walk import BlockingDetector, load_locations, walk_files


class EnvFileScan(BlockingDetector):
    """Walks visible directories (plus a few allowlisted hidden ones) for ``.env*``."""

    name = "env_files"
    description = "Dotenv files (.env, .env.local, .env.production, ...)"

    def collect(self, root: Path) -> list[CatalogEntry]:
        hidden_allowlist = frozenset(load_locations()["env_hidden_allowlist"])
        return [
            CatalogEntry.from_path(path, detected_by=self.name)
            for path, _st in walk_files(root, skip_hidden=True, hidden_allowlist=hidden_allowlist)
            if path.name.startswith(".env")
        ]
