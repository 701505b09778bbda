"""Cipher engine: the encrypt/decrypt transition for one catalog entry.

A transition walks ``idle → validating → transforming → settling →
finalizing`` and ends in ``done``, ``rolled_back`` or ``failed``. The new
form is always written (and fsync'd) before the old form is removed. If
anything goes wrong after the new form was written but before the old form
is gone, the new form is deleted again so the old one stays authoritative.

The engine never touches the catalog and never raises for operational
failures: callers get a :class:`TransitionResult` and decide once whether to
apply the catalog update.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import stat
import time
import zipfile
from pathlib import Path

from key_cypher.core.archive import (
    PRIVATE_DIR_MODE,
    PRIVATE_FILE_MODE,
    extract_zip,
    zip_directory,
)
from key_cypher.core.base import EntryKind, TransitionResult, TransitionState
from key_cypher.core.cipher import (
    decrypt_binary_framed,
    decrypt_text_framed,
    derive_key,
    encrypt_binary_framed,
    encrypt_text_framed,
)
from key_cypher.core.config import DEFAULT_SETTLE_DELAY
from key_cypher.core.errors import (
    ConflictState,
    InvalidPath,
    KeyCypherError,
    MalformedCiphertext,
    PathNotFound,
    kind_of,
)
from key_cypher.core.paths import (
    CipherFormat,
    decrypted_sibling_of,
    encrypted_format_of,
    encrypted_sibling_of,
)

logger = logging.getLogger(__name__)

_HANDLED = (KeyCypherError, OSError, ValueError, zipfile.BadZipFile)


def _file_mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


class _Transition:
    """Mutable bookkeeping for one run of the state machine."""

    def __init__(self, operation: str, source: Path) -> None:
        self.operation = operation
        self.source = source
        self.state = TransitionState.IDLE
        self.written: Path | None = None

    def create_file(self, path: Path, data: bytes, mode: int = PRIVATE_FILE_MODE) -> None:
        """Write *path*, which must not exist yet, and flush it to disk.

        The file is created owner-only and given *mode* once its content is
        on disk. The path is recorded for rollback only once this transition
        created it.
        """
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_FILE_MODE)
        self.written = path
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(path, mode)

    def create_directory(self, path: Path) -> None:
        path.mkdir(mode=PRIVATE_DIR_MODE)
        self.written = path

    def done(self, new_path: Path, kind: EntryKind) -> TransitionResult:
        self.state = TransitionState.DONE
        logger.info("%s %s -> %s", self.operation, self.source, new_path)
        return TransitionResult(
            operation=self.operation,
            source_path=str(self.source),
            success=True,
            state=self.state,
            new_path=str(new_path),
            kind=kind,
        )

    def fail(self, exc: BaseException) -> TransitionResult:
        failed_in = self.state
        rollback_error: str | None = None
        if self.written is not None:
            try:
                _remove_path(self.written)
                self.state = TransitionState.ROLLED_BACK
            except OSError as e:
                rollback_error = f"Could not remove {self.written}: {e}"
                self.state = TransitionState.FAILED
                logger.error("Rollback of %s failed: %s", self.written, e)
        else:
            self.state = TransitionState.FAILED
        logger.warning(
            "%s of %s failed while %s: %s", self.operation, self.source, failed_in, exc
        )
        return TransitionResult(
            operation=self.operation,
            source_path=str(self.source),
            success=False,
            state=self.state,
            error_kind=kind_of(exc),
            error=str(exc),
            rollback_error=rollback_error,
        )


class CipherEngine:
    def __init__(self, settle_delay: float = DEFAULT_SETTLE_DELAY) -> None:
        self.settle_delay = settle_delay

    def _settle(self) -> None:
        """Give the platform time to release handles on the freshly written file."""
        if self.settle_delay > 0:
            time.sleep(self.settle_delay)

    def encrypt(self, path: str | os.PathLike[str], passphrase: str) -> TransitionResult:
        source = Path(path)
        t = _Transition("encrypt", source)
        try:
            t.state = TransitionState.VALIDATING
            derive_key(passphrase)
            if not source.exists():
                raise PathNotFound(str(source))
            is_directory = source.is_dir()
            target = Path(encrypted_sibling_of(source, is_directory))
            if target.exists():
                raise ConflictState(str(source), str(target))

            t.state = TransitionState.TRANSFORMING
            if is_directory:
                self._encrypt_directory(source, target, passphrase, t)
            else:
                data = source.read_bytes()
                t.create_file(
                    target,
                    encrypt_text_framed(data, passphrase).encode("utf-8"),
                    _file_mode(source),
                )

            t.state = TransitionState.SETTLING
            self._settle()

            t.state = TransitionState.FINALIZING
            if is_directory:
                self._discard_directory(source)
            else:
                source.unlink()
        except _HANDLED as e:
            return t.fail(e)
        kind = EntryKind.DIRECTORY if is_directory else EntryKind.FILE
        return t.done(target, kind)

    def _encrypt_directory(
        self, source: Path, target: Path, passphrase: str, t: _Transition
    ) -> None:
        staging = source.parent / f".{source.name}.{secrets.token_hex(4)}.zip"
        try:
            zip_directory(source, staging)
            archive = staging.read_bytes()
        finally:
            staging.unlink(missing_ok=True)
        t.create_file(target, encrypt_binary_framed(archive, passphrase))

    def _discard_directory(self, source: Path) -> None:
        # The rename is the point of no return; after it the plaintext tree is gone
        # logically even if rmtree leaves debris behind.
        trash = source.parent / f".{source.name}.kcy-trash-{secrets.token_hex(4)}"
        source.rename(trash)
        try:
            shutil.rmtree(trash)
        except OSError as e:
            logger.warning("Could not fully remove %s: %s", trash, e)

    def decrypt(self, path: str | os.PathLike[str], passphrase: str) -> TransitionResult:
        source = Path(path)
        t = _Transition("decrypt", source)
        try:
            t.state = TransitionState.VALIDATING
            derive_key(passphrase)
            if not source.exists():
                raise PathNotFound(str(source))
            fmt = encrypted_format_of(source)
            if fmt is None:
                raise InvalidPath(f"{source} is not an encrypted name")
            if not source.is_file():
                raise InvalidPath(f"{source} is not an encrypted file")
            target = Path(decrypted_sibling_of(source))
            if target.exists():
                raise ConflictState(str(target), str(source))

            t.state = TransitionState.TRANSFORMING
            if fmt is CipherFormat.FILE:
                try:
                    framed = source.read_text(encoding="utf-8")
                except UnicodeDecodeError as e:
                    raise MalformedCiphertext(f"Encrypted file is not text: {e}") from e
                plaintext = decrypt_text_framed(framed, passphrase)
                t.create_file(target, plaintext, _file_mode(source))
            else:
                plaintext = decrypt_binary_framed(source.read_bytes(), passphrase)
                if fmt is CipherFormat.DIRECTORY:
                    t.create_directory(target)
                    extract_zip(plaintext, target)
                else:
                    t.create_file(target, plaintext)

            t.state = TransitionState.SETTLING
            self._settle()

            t.state = TransitionState.FINALIZING
            source.unlink()
        except _HANDLED as e:
            return t.fail(e)
        kind = EntryKind.DIRECTORY if fmt is CipherFormat.DIRECTORY else EntryKind.FILE
        return t.done(target, kind)
