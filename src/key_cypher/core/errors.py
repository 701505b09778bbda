"""Error taxonomy shared by scanners, the cipher engine and the archiver."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    PATH_NOT_FOUND = "path_not_found"
    PERMISSION_DENIED = "permission_denied"
    MALFORMED_CIPHERTEXT = "malformed_ciphertext"
    INVALID_PASSPHRASE = "invalid_passphrase"
    PARTIAL_SCAN_FAILURE = "partial_scan_failure"
    ROLLBACK_FAILURE = "rollback_failure"
    CONFLICT_STATE = "conflict_state"
    INVALID_PATH = "invalid_path"
    BACKUP_FAILED = "backup_failed"
    IO_ERROR = "io_error"


class KeyCypherError(Exception):
    """Base class for every error keycypher reports."""

    kind: ErrorKind = ErrorKind.IO_ERROR


class PathNotFound(KeyCypherError):
    kind = ErrorKind.PATH_NOT_FOUND

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Path does not exist: {path}")


class PermissionDenied(KeyCypherError):
    kind = ErrorKind.PERMISSION_DENIED


class MalformedCiphertext(KeyCypherError):
    """The ciphertext framing or block structure does not parse."""

    kind = ErrorKind.MALFORMED_CIPHERTEXT


class InvalidPassphrase(KeyCypherError):
    """Decryption ran but produced no usable plaintext."""

    kind = ErrorKind.INVALID_PASSPHRASE


class PartialScanFailure(KeyCypherError):
    kind = ErrorKind.PARTIAL_SCAN_FAILURE

    def __init__(self, detector: str, cause: BaseException) -> None:
        self.detector = detector
        self.cause = cause
        super().__init__(f"Detector {detector} failed: {cause}")


class RollbackFailure(KeyCypherError):
    kind = ErrorKind.ROLLBACK_FAILURE


class ConflictState(KeyCypherError):
    """Both the plaintext and the encrypted form of one secret exist."""

    kind = ErrorKind.CONFLICT_STATE

    def __init__(self, plaintext_path: str, encrypted_path: str) -> None:
        self.plaintext_path = plaintext_path
        self.encrypted_path = encrypted_path
        super().__init__(
            f"Both {plaintext_path} and its encrypted form {encrypted_path} exist"
        )


class InvalidPath(KeyCypherError):
    """The path is not accepted by the naming convention for this operation."""

    kind = ErrorKind.INVALID_PATH


class BackupFailed(KeyCypherError):
    kind = ErrorKind.BACKUP_FAILED


def kind_of(exc: BaseException) -> ErrorKind:
    """Map any exception raised during a filesystem operation to an ErrorKind."""
    if isinstance(exc, KeyCypherError):
        return exc.kind
    if isinstance(exc, FileNotFoundError):
        return ErrorKind.PATH_NOT_FOUND
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    return ErrorKind.IO_ERROR
