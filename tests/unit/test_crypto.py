"""Unit tests for obsguard/secrets/crypto.py — at-rest format and master keys."""

from __future__ import annotations

import base64
import json

import pytest

from obsguard.config import SecretStoreConfig
from obsguard.constants import NONCE_SIZE_BYTES, SALT_SIZE_BYTES
from obsguard.errors import ConfigError, EncryptionError
from obsguard.secrets.crypto import (
    decrypt_value,
    encrypt_value,
    key_fingerprint,
    load_master_key,
)


class TestEncryption:
    @pytest.mark.parametrize("plaintext", ["s3cr3t-token", "bob:secret", "ünïcødé ✓", "x" * 4096])
    def test_decrypt_reverses_encrypt(self, plaintext: str, master_key: bytes) -> None:
        assert decrypt_value(encrypt_value(plaintext, master_key), master_key) == plaintext

    def test_same_plaintext_gives_different_ciphertext(self, master_key: bytes) -> None:
        first = encrypt_value("same-value", master_key)
        second = encrypt_value("same-value", master_key)
        assert first != second

    def test_layout_is_salt_nonce_ciphertext(self, master_key: bytes) -> None:
        raw = base64.b64decode(encrypt_value("abc", master_key))
        # 3 bytes of plaintext + 16-byte GCM tag
        assert len(raw) == SALT_SIZE_BYTES + NONCE_SIZE_BYTES + 3 + 16

    def test_wrong_key_fails(self, master_key: bytes) -> None:
        encoded = encrypt_value("value", master_key)
        with pytest.raises(EncryptionError, match="decryption failed"):
            decrypt_value(encoded, b"k" * 32)

    def test_tampered_ciphertext_fails(self, master_key: bytes) -> None:
        raw = bytearray(base64.b64decode(encrypt_value("value", master_key)))
        raw[-1] ^= 0x01
        with pytest.raises(EncryptionError):
            decrypt_value(base64.b64encode(bytes(raw)).decode(), master_key)

    def test_not_base64_fails(self, master_key: bytes) -> None:
        with pytest.raises(EncryptionError, match="base64"):
            decrypt_value("***", master_key)

    @pytest.mark.parametrize("encoded", [None, 42, b"AAAA"])
    def test_non_string_fails(self, encoded, master_key: bytes) -> None:
        with pytest.raises(EncryptionError, match="must be a string"):
            decrypt_value(encoded, master_key)

    def test_too_short_fails(self, master_key: bytes) -> None:
        with pytest.raises(EncryptionError, match="too short"):
            decrypt_value(base64.b64encode(b"short").decode(), master_key)

    def test_error_never_contains_plaintext(self, master_key: bytes) -> None:
        encoded = encrypt_value("do-not-leak-me", master_key)
        with pytest.raises(EncryptionError) as exc_info:
            decrypt_value(encoded, b"z" * 32)
        assert "do-not-leak-me" not in str(exc_info.value)


class TestLoadMasterKey:
    def test_environment_key(self, storage_dir, master_key: bytes) -> None:
        config = SecretStoreConfig(storage_dir=str(storage_dir))
        assert load_master_key(config) == master_key

    def test_generated_key_writes_hint(self, storage_dir, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OBSERVABILITY_MASTER_KEY")
        config = SecretStoreConfig(storage_dir=str(storage_dir))
        key = load_master_key(config)
        assert len(key) == 32

        hint = json.loads((storage_dir / ".key_hint").read_text())
        assert hint["env_var"] == "OBSERVABILITY_MASTER_KEY"
        assert hint["key_hash"] == key_fingerprint(key)
        assert len(hint["key_hash"]) == 16
        assert "created_at" in hint
        assert base64.b64encode(key).decode() not in json.dumps(hint)

    def test_short_environment_key_rejected(self, storage_dir, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OBSERVABILITY_MASTER_KEY", base64.b64encode(b"short").decode())
        with pytest.raises(ConfigError, match="at least 16 bytes"):
            load_master_key(SecretStoreConfig(storage_dir=str(storage_dir)))

    def test_invalid_base64_environment_key_rejected(self, storage_dir, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OBSERVABILITY_MASTER_KEY", "not base64 !!")
        with pytest.raises(ConfigError, match="base64"):
            load_master_key(SecretStoreConfig(storage_dir=str(storage_dir)))

    def test_file_key_base64(self, tmp_path, storage_dir, master_key: bytes) -> None:
        key_file = tmp_path / "master.key"
        key_file.write_text(base64.b64encode(master_key).decode() + "\n")
        config = SecretStoreConfig(
            storage_dir=str(storage_dir), master_key_source="file", master_key_path=str(key_file)
        )
        assert load_master_key(config) == master_key

    def test_file_key_raw_bytes(self, tmp_path, storage_dir) -> None:
        raw = b"\xff\xfe" + b"raw-key-material-1234"
        key_file = tmp_path / "master.key"
        key_file.write_bytes(raw)
        config = SecretStoreConfig(
            storage_dir=str(storage_dir), master_key_source="file", master_key_path=str(key_file)
        )
        assert load_master_key(config) == raw

    def test_file_source_requires_path(self, storage_dir) -> None:
        config = SecretStoreConfig(storage_dir=str(storage_dir), master_key_source="file")
        with pytest.raises(ConfigError, match="master_key_path"):
            load_master_key(config)

    def test_unreadable_file_rejected(self, tmp_path, storage_dir) -> None:
        config = SecretStoreConfig(
            storage_dir=str(storage_dir),
            master_key_source="file",
            master_key_path=str(tmp_path / "missing.key"),
        )
        with pytest.raises(ConfigError, match="could not read"):
            load_master_key(config)
