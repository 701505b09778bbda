"""Core data model and the detector contract every scan strategy implements."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from key_cypher.core.errors import ErrorKind
from key_cypher.core.paths import DIRECTORY_SUFFIX, is_encrypted_name, normalize_path


class EntryKind(StrEnum):
    FILE = "file"
    DIRECTORY = "directory"


class CatalogEntry(BaseModel):
    """One tracked sensitive filesystem object."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    kind: EntryKind
    encrypted: bool = False
    detected_by: str | None = Field(default=None, alias="detectedBy")

    @property
    def key(self) -> str:
        """Normalised identity; two entries with the same key are duplicates."""
        return normalize_path(self.path)

    @classmethod
    def from_path(
        cls, path: str | os.PathLike[str], detected_by: str | None = None
    ) -> CatalogEntry:
        """Build an entry for an existing path, deriving kind and encrypted from it.

        Encrypted directory archives are files on disk but are catalogued as
        directories so that decrypting them restores a tree.
        """
        p = Path(path)
        if p.name.lower().endswith(DIRECTORY_SUFFIX) or p.is_dir():
            kind = EntryKind.DIRECTORY
        else:
            kind = EntryKind.FILE
        return cls(
            path=str(p),
            kind=kind,
            encrypted=is_encrypted_name(p),
            detected_by=detected_by,
        )


class TransitionState(StrEnum):
    IDLE = "idle"
    VALIDATING = "validating"
    TRANSFORMING = "transforming"
    SETTLING = "settling"
    FINALIZING = "finalizing"
    DONE = "done"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class TransitionResult(BaseModel):
    """Outcome of one encrypt or decrypt transition."""

    operation: str
    source_path: str
    success: bool
    state: TransitionState
    new_path: str | None = None
    kind: EntryKind | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    rollback_error: str | None = None


class StatusReport(BaseModel):
    path: str
    exists: bool
    conflict: bool = False
    plaintext_path: str | None = None
    encrypted_path: str | None = None
    error_kind: ErrorKind | None = None


class ScanReport(BaseModel):
    """Result of a batch scan."""

    new_entries: list[CatalogEntry] = Field(default_factory=list)
    failed_detectors: dict[str, str] = Field(default_factory=dict)
    catalog_size: int = 0


class ScanEvent(BaseModel):
    """Incremental notification produced while streaming a scan."""

    kind: str  # "batch" or "complete"
    detector: str | None = None
    new_entries: list[CatalogEntry] = Field(default_factory=list)
    error: str | None = None
    total_new: int = 0
    failed_detectors: dict[str, str] = Field(default_factory=dict)


class BackupResult(BaseModel):
    success: bool
    archive_path: str | None = None
    encrypted: bool = False
    members: int = 0
    skipped: list[str] = Field(default_factory=list)
    error_kind: ErrorKind | None = None
    error: str | None = None


class BaseDetector(ABC):
    """Abstract base class for all discovery strategies.

    A detector never raises for per-item problems: unreadable files and
    directories are skipped and the scan carries on.
    """

    name: str
    description: str

    @abstractmethod
    async def scan(self, root: Path) -> list[CatalogEntry]:
        """Return the candidate entries found under *root*."""
        ...
