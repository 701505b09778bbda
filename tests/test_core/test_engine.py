"""Tests for the encrypt/decrypt transition engine."""

import stat
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from key_cypher.core.base import EntryKind, TransitionState
from key_cypher.core.cipher import encrypt_binary_framed
from key_cypher.core.engine import CipherEngine
from key_cypher.core.errors import ErrorKind


@pytest.fixture
def engine() -> CipherEngine:
    return CipherEngine(settle_delay=0.0)


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")


class TestFileTransitions:
    def test_encrypt_replaces_plaintext(self, engine: CipherEngine, tmp_path: Path):
        source = tmp_path / "secret.txt"
        source.write_text("token=abc")

        result = engine.encrypt(source, "pw")

        target = tmp_path / "secret_cyphered.txt"
        assert result.success
        assert result.state is TransitionState.DONE
        assert result.new_path == str(target)
        assert result.kind is EntryKind.FILE
        assert not source.exists()
        assert ":" in target.read_text()

    def test_round_trip(self, engine: CipherEngine, tmp_path: Path):
        source = tmp_path / ".env"
        source.write_bytes(b"A=1\nB=2\n")

        encrypted = engine.encrypt(source, "pw")
        assert encrypted.new_path == str(tmp_path / ".env_cyphered")

        decrypted = engine.decrypt(encrypted.new_path, "pw")
        assert decrypted.success
        assert decrypted.new_path == str(source)
        assert source.read_bytes() == b"A=1\nB=2\n"
        assert not (tmp_path / ".env_cyphered").exists()

    @posix_only
    @pytest.mark.parametrize("mode", [0o600, 0o640])
    def test_round_trip_keeps_permissions(self, engine: CipherEngine, tmp_path: Path, mode: int):
        source = tmp_path / "id_rsa"
        source.write_text("key")
        source.chmod(mode)

        encrypted = Path(engine.encrypt(source, "pw").new_path)
        assert _mode(encrypted) == mode

        assert engine.decrypt(encrypted, "pw").success
        assert _mode(source) == mode

    def test_wrong_passphrase_keeps_ciphertext(self, engine: CipherEngine, tmp_path: Path):
        source = tmp_path / "id_rsa"
        source.write_text("key")
        encrypted = Path(engine.encrypt(source, "right").new_path)
        before = encrypted.read_bytes()

        result = engine.decrypt(encrypted, "wrong")

        assert not result.success
        assert result.error_kind is ErrorKind.INVALID_PASSPHRASE
        assert result.state is TransitionState.FAILED
        assert encrypted.read_bytes() == before
        assert not source.exists()

    def test_malformed_ciphertext(self, engine: CipherEngine, tmp_path: Path):
        bogus = tmp_path / "notes_cyphered.txt"
        bogus.write_text("garbage without a separator")

        result = engine.decrypt(bogus, "pw")

        assert not result.success
        assert result.error_kind is ErrorKind.MALFORMED_CIPHERTEXT
        assert result.state is TransitionState.FAILED
        assert bogus.exists()
        assert not (tmp_path / "notes.txt").exists()

    def test_binary_ciphertext_in_text_slot_is_malformed(
        self, engine: CipherEngine, tmp_path: Path
    ):
        bogus = tmp_path / "blob_cyphered.bin"
        bogus.write_bytes(b"\xff\xfe\x00\x80" * 8)
        result = engine.decrypt(bogus, "pw")
        assert result.error_kind is ErrorKind.MALFORMED_CIPHERTEXT

    def test_missing_path(self, engine: CipherEngine, tmp_path: Path):
        result = engine.encrypt(tmp_path / "nope.txt", "pw")
        assert not result.success
        assert result.error_kind is ErrorKind.PATH_NOT_FOUND
        assert result.state is TransitionState.FAILED

    def test_empty_passphrase(self, engine: CipherEngine, tmp_path: Path):
        source = tmp_path / "a.txt"
        source.write_text("x")
        result = engine.encrypt(source, "")
        assert result.error_kind is ErrorKind.INVALID_PASSPHRASE
        assert source.read_text() == "x"

    def test_encrypting_encrypted_name_is_invalid(self, engine: CipherEngine, tmp_path: Path):
        source = tmp_path / "a_cyphered.txt"
        source.write_text("x")
        result = engine.encrypt(source, "pw")
        assert result.error_kind is ErrorKind.INVALID_PATH
        assert source.exists()

    def test_decrypting_plain_name_is_invalid(self, engine: CipherEngine, tmp_path: Path):
        source = tmp_path / "a.txt"
        source.write_text("x")
        result = engine.decrypt(source, "pw")
        assert result.error_kind is ErrorKind.INVALID_PATH

    def test_conflict_when_both_forms_exist(self, engine: CipherEngine, tmp_path: Path):
        (tmp_path / "a.txt").write_text("plain")
        (tmp_path / "a_cyphered.txt").write_text("old ciphertext")

        result = engine.encrypt(tmp_path / "a.txt", "pw")

        assert result.error_kind is ErrorKind.CONFLICT_STATE
        assert (tmp_path / "a.txt").read_text() == "plain"
        assert (tmp_path / "a_cyphered.txt").read_text() == "old ciphertext"

    def test_decrypt_conflict(self, engine: CipherEngine, tmp_path: Path):
        source = tmp_path / "a.txt"
        source.write_text("plain")
        encrypted = Path(engine.encrypt(source, "pw").new_path)
        source.write_text("recreated")

        result = engine.decrypt(encrypted, "pw")

        assert result.error_kind is ErrorKind.CONFLICT_STATE
        assert source.read_text() == "recreated"
        assert encrypted.exists()


class TestRollback:
    def test_source_vanishing_during_settle_rolls_back(
        self, engine: CipherEngine, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        source = tmp_path / "secret.txt"
        source.write_text("x")
        monkeypatch.setattr(engine, "_settle", lambda: source.unlink())

        result = engine.encrypt(source, "pw")

        assert not result.success
        assert result.state is TransitionState.ROLLED_BACK
        assert result.error_kind is ErrorKind.PATH_NOT_FOUND
        assert result.rollback_error is None
        assert not (tmp_path / "secret_cyphered.txt").exists()

    def test_failed_rollback_is_reported(
        self, engine: CipherEngine, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        source = tmp_path / "secret.txt"
        source.write_text("x")
        monkeypatch.setattr(engine, "_settle", lambda: source.unlink())

        with patch(
            "key_cypher.core.engine._remove_path", side_effect=PermissionError("locked")
        ):
            result = engine.encrypt(source, "pw")

        assert not result.success
        assert result.state is TransitionState.FAILED
        assert result.rollback_error is not None
        assert "locked" in result.rollback_error
        assert (tmp_path / "secret_cyphered.txt").exists()

    def test_failure_before_write_touches_nothing(
        self, engine: CipherEngine, tmp_path: Path
    ):
        source = tmp_path / "secret.txt"
        source.write_text("x")

        with patch.object(Path, "read_bytes", side_effect=PermissionError("denied")):
            result = engine.encrypt(source, "pw")

        assert result.state is TransitionState.FAILED
        assert result.error_kind is ErrorKind.PERMISSION_DENIED
        assert source.read_text() == "x"
        assert not (tmp_path / "secret_cyphered.txt").exists()


class TestDirectoryTransitions:
    def _make_tree(self, root: Path) -> Path:
        tree = root / ".aws"
        (tree / "sso" / "cache").mkdir(parents=True)
        (tree / "empty").mkdir()
        (tree / "credentials").write_text("[default]\nkey=1\n")
        (tree / "config").write_text("[default]\nregion=eu-west-1\n")
        (tree / "sso" / "cache" / "token.json").write_text("{}")
        return tree

    def test_round_trip(self, engine: CipherEngine, tmp_path: Path):
        tree = self._make_tree(tmp_path)

        encrypted = engine.encrypt(tree, "pw")

        archive = tmp_path / ".aws_cypheredd.zip"
        assert encrypted.success
        assert encrypted.kind is EntryKind.DIRECTORY
        assert encrypted.new_path == str(archive)
        assert not tree.exists()
        assert sorted(p.name for p in tmp_path.iterdir()) == [".aws_cypheredd.zip"]

        decrypted = engine.decrypt(archive, "pw")

        assert decrypted.success
        assert decrypted.kind is EntryKind.DIRECTORY
        assert (tree / "credentials").read_text() == "[default]\nkey=1\n"
        assert (tree / "config").read_text() == "[default]\nregion=eu-west-1\n"
        assert (tree / "sso" / "cache" / "token.json").read_text() == "{}"
        assert (tree / "empty").is_dir()
        assert not archive.exists()

    @posix_only
    def test_round_trip_keeps_permissions(self, engine: CipherEngine, tmp_path: Path):
        tree = self._make_tree(tmp_path)
        (tree / "credentials").chmod(0o600)
        (tree / "config").chmod(0o644)
        (tree / "sso").chmod(0o700)

        archive = Path(engine.encrypt(tree, "pw").new_path)
        assert _mode(archive) == 0o600

        assert engine.decrypt(archive, "pw").success
        assert _mode(tree) == 0o700
        assert _mode(tree / "credentials") == 0o600
        assert _mode(tree / "config") == 0o644
        assert _mode(tree / "sso") == 0o700

    def test_wrong_passphrase_leaves_no_directory(self, engine: CipherEngine, tmp_path: Path):
        tree = self._make_tree(tmp_path)
        archive = Path(engine.encrypt(tree, "right").new_path)

        result = engine.decrypt(archive, "wrong")

        assert result.error_kind is ErrorKind.INVALID_PASSPHRASE
        assert not tree.exists()
        assert archive.exists()

    def test_garbage_archive_is_rolled_back(self, engine: CipherEngine, tmp_path: Path):
        archive = tmp_path / "keys_cypheredd.zip"
        archive.write_bytes(encrypt_binary_framed(b"this is not a zip", "pw"))

        result = engine.decrypt(archive, "pw")

        assert result.error_kind is ErrorKind.MALFORMED_CIPHERTEXT
        assert result.state is TransitionState.ROLLED_BACK
        assert not (tmp_path / "keys").exists()
        assert archive.exists()
