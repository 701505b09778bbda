"""Naming convention for encrypted artifacts, path identity, and shipped data."""

from __future__ import annotations

import os
import posixpath
from enum import StrEnum
from pathlib import Path

from key_cypher.core.errors import InvalidPath

# Resolve from src/key_cypher/core/paths.py → src/key_cypher/data/
DATA_DIR = Path(__file__).resolve().parent.parent / "data"

CYPHERED_MARKER = "_cyphered"
DIRECTORY_SUFFIX = "_cypheredd.zip"
BACKUP_SUFFIX = "_cyphered.zip.zip"


class CipherFormat(StrEnum):
    """The three on-disk encrypted formats, told apart by suffix only."""

    FILE = "file"  # name_cyphered.ext, text framing
    DIRECTORY = "directory"  # dirname_cypheredd.zip, binary framing around a zip
    BACKUP = "backup"  # backup_cyphered.zip.zip, binary framing around a zip


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Return the identity key used to deduplicate catalog entries.

    Separators become ``/``, redundant components are collapsed and the
    result is case-folded, so ``C:\\Keys\\ID_RSA`` and ``c:/keys/id_rsa``
    compare equal.
    """
    text = os.fspath(path).replace("\\", "/")
    return posixpath.normpath(text).casefold()


def _split(path: str | os.PathLike[str]) -> tuple[str, str]:
    text = os.fspath(path)
    stripped = text.rstrip("/\\") or text
    return os.path.split(stripped)


def is_encrypted_name(path: str | os.PathLike[str]) -> bool:
    """True if the final path component carries the cyphered marker."""
    _head, tail = _split(path)
    return CYPHERED_MARKER in tail.lower()


def encrypted_format_of(path: str | os.PathLike[str]) -> CipherFormat | None:
    _head, tail = _split(path)
    lower = tail.lower()
    if lower.endswith(DIRECTORY_SUFFIX):
        return CipherFormat.DIRECTORY
    if lower.endswith(BACKUP_SUFFIX):
        return CipherFormat.BACKUP
    if CYPHERED_MARKER in lower:
        return CipherFormat.FILE
    return None


def encrypted_sibling_of(path: str | os.PathLike[str], is_directory: bool) -> str:
    """Compute where the encrypted form of *path* lives.

    Directories become ``<dir>_cypheredd.zip``; files get the marker
    inserted right before their last extension (or appended when there is
    none, which includes dotfiles such as ``.env``).
    """
    head, tail = _split(path)
    if not tail or CYPHERED_MARKER in tail.lower():
        raise InvalidPath(f"{os.fspath(path)} is already an encrypted name")
    if is_directory:
        return os.path.join(head, tail + DIRECTORY_SUFFIX)
    stem, ext = os.path.splitext(tail)
    return os.path.join(head, f"{stem}{CYPHERED_MARKER}{ext}")


def decrypted_sibling_of(path: str | os.PathLike[str]) -> str:
    """Inverse of :func:`encrypted_sibling_of` and :func:`backup_encrypted_name`."""
    head, tail = _split(path)
    lower = tail.lower()
    if lower.endswith(DIRECTORY_SUFFIX):
        plain = tail[: -len(DIRECTORY_SUFFIX)]
    elif lower.endswith(BACKUP_SUFFIX):
        plain = tail[: -len(BACKUP_SUFFIX)] + ".zip"
    else:
        idx = lower.rfind(CYPHERED_MARKER)
        if idx < 0:
            raise InvalidPath(f"{os.fspath(path)} is not an encrypted name")
        plain = tail[:idx] + tail[idx + len(CYPHERED_MARKER) :]
    if not plain:
        raise InvalidPath(f"{os.fspath(path)} has no plaintext name")
    return os.path.join(head, plain)


def backup_encrypted_name(path: str | os.PathLike[str]) -> str:
    """``backup.zip`` → ``backup_cyphered.zip.zip``."""
    text = os.fspath(path)
    if not text.lower().endswith(".zip"):
        raise InvalidPath(f"{text} is not a zip archive")
    return text[: -len(".zip")] + BACKUP_SUFFIX


def logical_key(path: str | os.PathLike[str]) -> str:
    """Identity shared by a secret's plaintext and encrypted forms."""
    if is_encrypted_name(path):
        try:
            return normalize_path(decrypted_sibling_of(path))
        except InvalidPath:
            pass
    return normalize_path(path)
