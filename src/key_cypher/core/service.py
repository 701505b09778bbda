"""KeyCypher facade: the operations a front end calls."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncIterator, Callable, Sequence
from pathlib import Path

from key_cypher.core.archive import Archiver
from key_cypher.core.base import (
    BackupResult,
    BaseDetector,
    CatalogEntry,
    EntryKind,
    ScanEvent,
    ScanReport,
    StatusReport,
    TransitionResult,
)
from key_cypher.core.catalog import Catalog
from key_cypher.core.config import Settings, get_settings
from key_cypher.core.engine import CipherEngine
from key_cypher.core.errors import ErrorKind, InvalidPath, PathNotFound
from key_cypher.core.paths import (
    decrypted_sibling_of,
    encrypted_sibling_of,
    is_encrypted_name,
    logical_key,
)
from key_cypher.core.scanner import ScanOrchestrator

logger = logging.getLogger(__name__)

MANUAL = "manual"


class KeyCypher:
    """Wires the catalog, scanner, cipher engine and archiver together.

    Transitions on the same logical secret (a plaintext path and its
    encrypted sibling) are serialised through one lock per secret; work on
    different secrets may overlap.
    """

    def __init__(
        self,
        settings: Settings,
        catalog: Catalog | None = None,
        engine: CipherEngine | None = None,
        detectors: Sequence[BaseDetector] | None = None,
    ) -> None:
        self.settings = settings
        self.catalog = catalog if catalog is not None else Catalog(settings.catalog_path)
        self.engine = engine if engine is not None else CipherEngine(settings.settle_delay)
        self.scanner = ScanOrchestrator(self.catalog, settings.home, detectors)
        self.archiver = Archiver(self.catalog, settings.backup_dir)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @classmethod
    def from_config(cls, config_path: Path | None = None) -> KeyCypher:
        return cls(get_settings(config_path))

    # --- catalog ---

    def entries(self) -> list[CatalogEntry]:
        return self.catalog.entries()

    def add_path(self, path: str | os.PathLike[str]) -> CatalogEntry:
        """Track *path* explicitly. Raises PathNotFound if it does not exist."""
        p = Path(path).expanduser().absolute()
        if not p.exists():
            raise PathNotFound(str(p))
        existing = self.catalog.get(p)
        if existing is not None:
            return existing
        entry = CatalogEntry.from_path(p, detected_by=MANUAL)
        self.catalog.add(entry)
        return entry

    def remove_entry(self, path: str | os.PathLike[str]) -> bool:
        return self.catalog.remove(path) is not None

    def check_status(self, path: str | os.PathLike[str]) -> StatusReport:
        """Report whether *path* exists and whether both forms of its secret exist."""
        p = Path(path)
        exists = p.exists()
        try:
            if is_encrypted_name(p):
                encrypted = p
                plaintext = Path(decrypted_sibling_of(p))
            else:
                plaintext = p
                as_file = Path(encrypted_sibling_of(p, is_directory=False))
                as_dir = Path(encrypted_sibling_of(p, is_directory=True))
                if p.is_dir() or (not as_file.exists() and as_dir.exists()):
                    encrypted = as_dir
                else:
                    encrypted = as_file
        except InvalidPath:
            return StatusReport(path=str(p), exists=exists)

        conflict = plaintext.exists() and encrypted.exists()
        if conflict:
            logger.warning("Conflict: both %s and %s exist", plaintext, encrypted)
        return StatusReport(
            path=str(p),
            exists=exists,
            conflict=conflict,
            plaintext_path=str(plaintext),
            encrypted_path=str(encrypted),
            error_kind=ErrorKind.CONFLICT_STATE if conflict else None,
        )

    # --- scanning ---

    async def scan_once(self) -> ScanReport:
        return await self.scanner.scan_once()

    def scan_background(self) -> AsyncIterator[ScanEvent]:
        return self.scanner.scan_stream()

    # --- transitions ---

    @contextlib.asynccontextmanager
    async def _locked(self, path: str | os.PathLike[str]) -> AsyncIterator[None]:
        """Hold the per-secret lock; the lock is dropped once nobody holds or awaits it."""
        key = logical_key(path)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _record(self, path: Path, new_path: str, kind: EntryKind) -> None:
        """Swap the catalog entry for *path* to the transition's new form."""
        previous = self.catalog.get(path)
        new_entry = CatalogEntry(
            path=new_path,
            kind=kind,
            encrypted=is_encrypted_name(new_path),
            detected_by=previous.detected_by if previous is not None else MANUAL,
        )
        self.catalog.replace(path, new_entry)

    async def _transition(
        self,
        run: Callable[[str | os.PathLike[str], str], TransitionResult],
        path: str | os.PathLike[str],
        passphrase: str,
    ) -> TransitionResult:
        path = Path(path).expanduser().absolute()
        loop = asyncio.get_running_loop()
        async with self._locked(path):
            result = await loop.run_in_executor(None, run, path, passphrase)
            if not result.success or result.new_path is None or result.kind is None:
                return result

            try:
                await loop.run_in_executor(
                    None, self._record, path, result.new_path, result.kind
                )
            except OSError as e:
                logger.error("%s succeeded but the catalog was not saved: %s", path, e)
                return result.model_copy(update={"error": f"Catalog not saved: {e}"})
            return result

    async def encrypt(self, path: str | os.PathLike[str], passphrase: str) -> TransitionResult:
        return await self._transition(self.engine.encrypt, path, passphrase)

    async def decrypt(self, path: str | os.PathLike[str], passphrase: str) -> TransitionResult:
        return await self._transition(self.engine.decrypt, path, passphrase)

    # --- backup ---

    async def create_backup(self, passphrase: str | None = None) -> BackupResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.archiver.create_backup, passphrase)
