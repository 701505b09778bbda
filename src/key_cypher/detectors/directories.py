"""Known credential directories (SSH, AWS, Kubernetes, Docker, cloud CLIs)."""

from __future__ import annotations

import contextlib
import logging
import re
from pathlib import Path

from key_cypher.core.base import CatalogEntry
from key_cypher.detectors.walk import BlockingDetector, load_locations

logger = logging.getLogger(__name__)

_IDENTITY_FILE = re.compile(r"^identityfile(?:\s*=\s*|\s+)(.+)$", re.I)


def parse_identity_files(config_path: Path, home: Path) -> list[Path]:
    """Return every existing file named by an ``IdentityFile`` directive.

    ``~`` and ``%d`` expand to *home*; relative paths resolve against the
    directory holding the config file.
    """
    try:
        content = config_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug("Cannot read SSH config %s: %s", config_path, e)
        return []

    found: list[Path] = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _IDENTITY_FILE.match(stripped)
        if not match:
            continue
        value = match.group(1).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        else:
            value = value.split()[0]
        value = value.replace("%d", str(home))
        if value == "~" or value.startswith(("~/", "~\\")):
            identity = home / value[2:] if len(value) > 1 else home
        else:
            identity = Path(value)
        if not identity.is_absolute():
            identity = (config_path.parent / identity).resolve()

        with contextlib.suppress(OSError):
            if identity.is_file() and identity not in found:
                found.append(identity)
    return found


class AllowlistDirectoryScan(BlockingDetector):
    name = "directories"
    description = "Fixed table of credential directories and the files inside them"

    def collect(self, root: Path) -> list[CatalogEntry]:
        entries: list[CatalogEntry] = []
        for location in load_locations()["directories"]:
            directory = root / location["dir"]
            try:
                if not directory.is_dir():
                    continue
            except OSError:
                continue
            for filename in location["files"]:
                file_path = directory / filename
                try:
                    if not file_path.is_file():
                        continue
                except OSError:
                    continue
                entries.append(CatalogEntry.from_path(file_path, detected_by=self.name))
                if location.get("ssh_config") and filename == "config":
                    for identity in parse_identity_files(file_path, root):
                        entries.append(CatalogEntry.from_path(identity, detected_by="ssh_config"))
        return entries
