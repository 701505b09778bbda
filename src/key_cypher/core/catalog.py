"""Persistent, deduplicated catalog of tracked entries."""

from __future__ import annotations

import logging
import os
import secrets
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from key_cypher.core.base import CatalogEntry
from key_cypher.core.paths import normalize_path

logger = logging.getLogger(__name__)

_ENTRIES_ADAPTER: TypeAdapter[list[CatalogEntry]] = TypeAdapter(list[CatalogEntry])


def _serialise(entries: dict[str, CatalogEntry]) -> bytes:
    return _ENTRIES_ADAPTER.dump_json(list(entries.values()), by_alias=True, indent=2)


class Catalog:
    """Owns the on-disk catalog file.

    The store is read fully and rewritten wholesale after every mutation. A
    mutation only reaches memory once its rewrite is on disk. All mutations
    go through one lock so concurrent scans and cipher transitions never
    interleave their read-modify-write cycles.
    Insertion order is preserved and is the order entries are written in.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._entries: dict[str, CatalogEntry] = {}
        self._loaded = False

    def load(self) -> list[CatalogEntry]:
        """(Re)read the backing file. A missing file is an empty catalog.

        An unreadable file is moved aside, never overwritten, and the catalog
        starts empty.
        """
        with self._lock:
            self._entries = {}
            self._loaded = True
            if not self.path.exists():
                return []
            try:
                raw = self.path.read_bytes()
                entries = _ENTRIES_ADAPTER.validate_json(raw) if raw.strip() else []
            except (OSError, ValidationError, ValueError) as e:
                self._quarantine(e)
                return []
            for entry in entries:
                self._entries.setdefault(entry.key, entry)
            return list(self._entries.values())

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _quarantine(self, error: Exception) -> None:
        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S-%f")
        aside = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            self.path.replace(aside)
        except OSError as e:
            logger.error(
                "Could not read catalog %s (%s) nor move it aside: %s", self.path, error, e
            )
            return
        logger.warning(
            "Could not read catalog %s, moved it to %s and starting empty: %s",
            self.path,
            aside,
            error,
        )

    def _write(self, entries: dict[str, CatalogEntry]) -> None:
        """Atomically replace the backing file with *entries*."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.{secrets.token_hex(4)}.tmp")
        try:
            with open(tmp, "xb") as f:
                f.write(_serialise(entries))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def save(self) -> None:
        with self._lock:
            self._ensure_loaded()
            self._write(self._entries)

    def snapshot(self) -> bytes:
        """Serialised copy of the catalog, byte-identical to what save() writes."""
        with self._lock:
            self._ensure_loaded()
            return _serialise(self._entries)

    def entries(self) -> list[CatalogEntry]:
        with self._lock:
            self._ensure_loaded()
            return list(self._entries.values())

    def __len__(self) -> int:
        return len(self.entries())

    def get(self, path: str | os.PathLike[str]) -> CatalogEntry | None:
        with self._lock:
            self._ensure_loaded()
            return self._entries.get(normalize_path(path))

    def contains(self, path: str | os.PathLike[str]) -> bool:
        return self.get(path) is not None

    def add(self, entry: CatalogEntry) -> bool:
        """Insert *entry*; returns False (and changes nothing) for a duplicate."""
        return bool(self.merge([entry]))

    def merge(self, entries: Iterable[CatalogEntry]) -> list[CatalogEntry]:
        """Insert every entry not already present; persist once if anything changed.

        Returns the entries actually inserted, in input order.
        """
        with self._lock:
            self._ensure_loaded()
            merged = dict(self._entries)
            added: list[CatalogEntry] = []
            for entry in entries:
                key = entry.key
                if key in merged:
                    continue
                merged[key] = entry
                added.append(entry)
            if added:
                self._write(merged)
                self._entries = merged
            return added

    def remove(self, path: str | os.PathLike[str]) -> CatalogEntry | None:
        with self._lock:
            self._ensure_loaded()
            kept = dict(self._entries)
            removed = kept.pop(normalize_path(path), None)
            if removed is not None:
                self._write(kept)
                self._entries = kept
            return removed

    def replace(self, old_path: str | os.PathLike[str], new_entry: CatalogEntry) -> None:
        """Swap the entry at *old_path* for *new_entry* as one logical update.

        The new entry takes the old one's position in the catalog order.
        """
        with self._lock:
            self._ensure_loaded()
            old_key = normalize_path(old_path)
            rebuilt: dict[str, CatalogEntry] = {}
            placed = False
            for key, entry in self._entries.items():
                if key == old_key:
                    rebuilt[new_entry.key] = new_entry
                    placed = True
                elif key != new_entry.key:
                    rebuilt[key] = entry
            if not placed:
                rebuilt[new_entry.key] = new_entry
            self._write(rebuilt)
            self._entries = rebuilt
