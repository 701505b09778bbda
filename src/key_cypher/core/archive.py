"""Zip helpers for directory encryption and the catalog backup archiver."""

from __future__ import annotations

import io
import logging
import os
import stat
import zipfile
from datetime import UTC, datetime
from pathlib import Path, PurePath
from typing import BinaryIO

from key_cypher.core.base import BackupResult, CatalogEntry, EntryKind
from key_cypher.core.catalog import Catalog
from key_cypher.core.cipher import encrypt_binary_framed
from key_cypher.core.errors import BackupFailed, KeyCypherError, MalformedCiphertext, kind_of
from key_cypher.core.paths import backup_encrypted_name, is_encrypted_name

logger = logging.getLogger(__name__)

COMPRESS_LEVEL = 9
CATALOG_MEMBER = "keycypher-catalog.json"
PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


def _default_mode(info: zipfile.ZipInfo) -> int:
    return PRIVATE_DIR_MODE if info.is_dir() else PRIVATE_FILE_MODE


def _create_private(path: Path) -> BinaryIO:
    """Open a new owner-only file for writing; fails if *path* exists."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_FILE_MODE)
    return os.fdopen(fd, "wb")


def zip_directory(source: Path, destination: Path) -> int:
    """Write a maximum-compression zip of the tree under *source*.

    Member names are relative to *source*. Every subdirectory gets its own
    entry so empty directories and directory permissions survive.
    Returns the number of files written.
    """
    count = 0
    with zipfile.ZipFile(
        destination, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL
    ) as zf:
        for dirpath, dirnames, filenames in os.walk(source):
            dirnames.sort()
            current = Path(dirpath)
            rel_dir = current.relative_to(source)
            if rel_dir != Path("."):
                zf.write(current, rel_dir.as_posix())
            for filename in sorted(filenames):
                file_path = current / filename
                zf.write(file_path, (rel_dir / filename).as_posix())
                count += 1
    return count


def extract_zip(data: bytes, destination: Path) -> None:
    """Extract an in-memory zip into the existing *destination* directory.

    Every member is checked before anything is written; a member that would
    land outside *destination* rejects the whole archive. Permission bits
    stored with a member are restored, children before their directories;
    members without any are made owner-only.
    """
    root = destination.resolve()
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for member in zf.namelist():
                target = (root / member).resolve()
                if target != root and root not in target.parents:
                    raise MalformedCiphertext(f"Archive member escapes destination: {member}")
            zf.extractall(destination)
            for info in reversed(zf.infolist()):
                mode = stat.S_IMODE(info.external_attr >> 16)
                os.chmod(root / info.filename, mode or _default_mode(info))
    except zipfile.BadZipFile as e:
        raise MalformedCiphertext(f"Decrypted data is not a valid archive: {e}") from e


def member_name(path: str | os.PathLike[str]) -> str:
    """Archive member name for an absolute path: the path relative to its anchor.

    On Windows the drive letter is kept as the first component so that
    ``C:\\x`` and ``D:\\x`` do not collide.
    """
    p = path if isinstance(path, PurePath) else PurePath(path)
    rel = p.relative_to(p.anchor) if p.anchor else p
    drive = p.drive.rstrip(":").replace("\\", "").replace("/", "")
    name = rel.as_posix()
    return f"{drive}/{name}" if drive else name


class Archiver:
    """Builds point-in-time backups of every catalogued file plus the catalog."""

    def __init__(self, catalog: Catalog, backup_dir: Path) -> None:
        self.catalog = catalog
        self.backup_dir = backup_dir

    def _archive_path(self) -> Path:
        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        candidate = self.backup_dir / f"keycypher-backup-{stamp}.zip"
        n = 1
        while candidate.exists() or Path(backup_encrypted_name(candidate)).exists():
            candidate = self.backup_dir / f"keycypher-backup-{stamp}-{n}.zip"
            n += 1
        return candidate

    def create_backup(self, passphrase: str | None = None) -> BackupResult:
        try:
            return self._create_backup(passphrase)
        except KeyCypherError as e:
            logger.error("Backup failed: %s", e)
            return BackupResult(success=False, error_kind=e.kind, error=str(e))
        except (OSError, ValueError) as e:
            logger.error("Backup failed: %s", e)
            return BackupResult(success=False, error_kind=kind_of(e), error=str(e))

    def _create_backup(self, passphrase: str | None) -> BackupResult:
        entries = self.catalog.entries()
        if not entries:
            raise BackupFailed("Catalog is empty, nothing to back up")

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        archive_path = self._archive_path()
        members = 0
        skipped: list[str] = []

        with _create_private(archive_path) as raw, zipfile.ZipFile(
            raw, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL
        ) as zf:
            for entry in entries:
                source = Path(entry.path)
                if not source.is_file():
                    continue
                try:
                    info = zipfile.ZipInfo.from_file(source, member_name(source))
                    info.compress_type = zipfile.ZIP_DEFLATED
                    zf.writestr(info, source.read_bytes(), compresslevel=COMPRESS_LEVEL)
                    members += 1
                except OSError as e:
                    logger.warning("Skipping %s in backup: %s", source, e)
                    skipped.append(entry.path)
            zf.writestr(CATALOG_MEMBER, self.catalog.snapshot())

        if members == 0:
            archive_path.unlink(missing_ok=True)
            raise BackupFailed("No catalogued file could be read")

        logger.info("Wrote backup %s with %d file(s)", archive_path, members)
        if not passphrase:
            return BackupResult(
                success=True, archive_path=str(archive_path), members=members, skipped=skipped
            )

        encrypted_path = Path(backup_encrypted_name(archive_path))
        try:
            sealed = encrypt_binary_framed(archive_path.read_bytes(), passphrase)
            with _create_private(encrypted_path) as f:
                f.write(sealed)
        except Exception:
            encrypted_path.unlink(missing_ok=True)
            raise
        finally:
            archive_path.unlink(missing_ok=True)

        self.catalog.add(
            CatalogEntry(
                path=str(encrypted_path),
                kind=EntryKind.FILE,
                encrypted=is_encrypted_name(encrypted_path),
                detected_by="backup",
            )
        )
        logger.info("Encrypted backup to %s", encrypted_path)
        return BackupResult(
            success=True,
            archive_path=str(encrypted_path),
            encrypted=True,
            members=members,
            skipped=skipped,
        )
