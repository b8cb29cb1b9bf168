"""At-rest encryption for secret values and master key acquisition.

Stored form: ``base64(salt || nonce || ciphertext+tag)``
  salt   — 16 random bytes, fresh per call, feeds PBKDF2-HMAC-SHA256
  nonce  — 12 random bytes, fresh per call, AES-GCM nonce
The per-secret key is derived from the master key and the salt, so two
encryptions of the same plaintext never share a ciphertext.

SECURITY: nothing in this module logs or raises with plaintext or key bytes.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from obsguard.config import SecretStoreConfig
from obsguard.constants import (
    DERIVED_KEY_BYTES,
    GENERATED_MASTER_KEY_BYTES,
    KEY_HINT_FILENAME,
    KEY_HINT_HASH_BYTES,
    MIN_MASTER_KEY_BYTES,
    NONCE_SIZE_BYTES,
    PBKDF2_ITERATIONS,
    SALT_SIZE_BYTES,
    SECRET_FILE_MODE,
    STORAGE_DIR_MODE,
)
from obsguard.errors import ConfigError, EncryptionError
from obsguard.utils.logger import get_logger

logger = get_logger(__name__)


def derive_key(master_key: bytes, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=DERIVED_KEY_BYTES,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(master_key)


def encrypt_value(plaintext: str, master_key: bytes) -> str:
    """Encrypt ``plaintext`` with a fresh salt and nonce; return base64 text."""
    salt = secrets.token_bytes(SALT_SIZE_BYTES)
    nonce = secrets.token_bytes(NONCE_SIZE_BYTES)
    try:
        ciphertext = AESGCM(derive_key(master_key, salt)).encrypt(
            nonce, plaintext.encode("utf-8"), None
        )
    except (ValueError, TypeError) as exc:
        raise EncryptionError(f"encryption failed: {type(exc).__name__}") from exc
    return base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def decrypt_value(encoded: str, master_key: bytes) -> str:
    """Reverse encrypt_value(). Raises EncryptionError on any failure."""
    if not isinstance(encoded, str):
        raise EncryptionError(f"ciphertext must be a string, got {type(encoded).__name__}")
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncryptionError("ciphertext is not valid base64") from exc

    if len(raw) < SALT_SIZE_BYTES + NONCE_SIZE_BYTES:
        raise EncryptionError("ciphertext too short")

    salt = raw[:SALT_SIZE_BYTES]
    nonce = raw[SALT_SIZE_BYTES:SALT_SIZE_BYTES + NONCE_SIZE_BYTES]
    ciphertext = raw[SALT_SIZE_BYTES + NONCE_SIZE_BYTES:]
    try:
        plaintext = AESGCM(derive_key(master_key, salt)).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise EncryptionError("decryption failed: authentication tag mismatch") from exc
    except ValueError as exc:
        raise EncryptionError(f"decryption failed: {type(exc).__name__}") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncryptionError("decrypted value is not valid UTF-8") from exc


def key_fingerprint(key: bytes) -> str:
    """Hex of the first 8 bytes of SHA-256(key). Safe to log and persist."""
    return hashlib.sha256(key).digest()[:KEY_HINT_HASH_BYTES].hex()


def _decode_key_text(text: str) -> Optional[bytes]:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None


def load_master_key(config: SecretStoreConfig) -> bytes:
    """Acquire the master key described by ``config``.

    environment: base64 from ``config.master_key_env``. When the variable is
                 unset a random key is generated and a hint file is written
                 into the storage directory. A set but undecodable variable
                 is an error.
    file:        ``config.master_key_path``, trimmed; base64-decoded when
                 possible, raw bytes otherwise.

    Raises:
        ConfigError: unsupported source, missing path, unreadable file,
                     invalid base64, or a key shorter than 16 bytes.
    """
    if config.master_key_source == "environment":
        encoded = os.environ.get(config.master_key_env)
        if encoded:
            key = _decode_key_text(encoded.strip())
            if key is None:
                raise ConfigError(
                    f"master key in ${config.master_key_env} is not valid base64"
                )
        else:
            key = secrets.token_bytes(GENERATED_MASTER_KEY_BYTES)
            write_key_hint(config.storage_dir, key, config.master_key_env)
            logger.warning(
                "Master key not set — generated an ephemeral key. Secrets encrypted "
                "with it cannot be read after restart unless the key is exported.",
                env_var=config.master_key_env,
                key_hash=key_fingerprint(key),
            )
    elif config.master_key_source == "file":
        if not config.master_key_path:
            raise ConfigError("master_key_path is required when master_key_source is 'file'")
        try:
            content = Path(config.master_key_path).read_bytes().strip()
        except OSError as exc:
            raise ConfigError(
                f"could not read master key file {config.master_key_path}: {exc.strerror}"
            ) from exc
        decoded = None
        try:
            decoded = _decode_key_text(content.decode("ascii"))
        except UnicodeDecodeError:
            pass
        key = decoded if decoded is not None else content
    else:
        raise ConfigError(f"unsupported master key source: {config.master_key_source}")

    if len(key) < MIN_MASTER_KEY_BYTES:
        raise ConfigError(
            f"master key must be at least {MIN_MASTER_KEY_BYTES} bytes, got {len(key)}"
        )
    return key


def write_key_hint(storage_dir: str, key: bytes, env_var: str) -> Path:
    """Write ``.key_hint`` next to the secret files.

    The hint records where the key was expected and a hash prefix of the
    generated key — never the key itself.
    """
    directory = Path(storage_dir)
    directory.mkdir(mode=STORAGE_DIR_MODE, parents=True, exist_ok=True)
    hint = {
        "source": "generated",
        "env_var": env_var,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "key_hash": key_fingerprint(key),
    }
    path = directory / KEY_HINT_FILENAME
    try:
        path.write_text(json.dumps(hint, indent=2))
        os.chmod(path, SECRET_FILE_MODE)
    except OSError as exc:
        # The hint is diagnostic only.
        logger.warning("Could not write key hint file", path=str(path), error=exc.strerror)
    return path
