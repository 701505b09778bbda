"""Previously encrypted files, picked up by their naming marker."""

from __future__ import annotations

from pathlib import Path

from key_cypher.core.base import CatalogEntry
from key_cypher.core.paths import is_encrypted_name
from key_cypher.detectors.walk import BlockingDetector, walk_files


class CypheredNameScan(BlockingDetector):
    name = "cyphered_filename"
    description = "Encrypted artifacts that were moved or never re-added"

    def collect(self, root: Path) -> list[CatalogEntry]:
        return [
            CatalogEntry.from_path(path, detected_by=self.name)
            for path, _st in walk_files(root)
            if is_encrypted_name(path)
        ]
