"""Known single-file secret locations relative to the home directory."""

from __future__ import annotations

from pathlib import Path

from key_cypher.core.base import CatalogEntry
from key_cypher.detectors.walk import BlockingDetector, load_locations


class AllowlistFileScan(BlockingDetector):
    name = "single_files"
    description = "Token and password files at fixed home-relative locations"

    def collect(self, root: Path) -> list[CatalogEntry]:
        entries: list[CatalogEntry] = []
        for relative in load_locations()["single_files"]:
            file_path = root / relative
            try:
                if file_path.is_file():
                    entries.append(CatalogEntry.from_path(file_path, detected_by=self.name))
            except OSError:
                continue
        return entries
