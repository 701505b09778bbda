"""Recursive search for key container extensions (.pem, .ppk)."""

from __future__ import annotations

import os
from pathlib import Path

from key_cypher.core.base import CatalogEntry
from key_cypher.detectors.walk import BlockingDetector, load_locations, walk_files


class ExtensionScan(BlockingDetector):
    name = "pem_ppk"
    description = "PEM and PuTTY key files anywhere under the home directory"

    def collect(self, root: Path) -> list[CatalogEntry]:
        extensions = {ext.lower() for ext in load_locations()["extensions"]}
        return [
            CatalogEntry.from_path(path, detected_by=self.name)
            for path, _st in walk_files(root)
            if os.path.splitext(path.name)[1].lower() in extensions
        ]
