"""Shared constants for obsguard.

All size limits, crypto parameters and numeric caps used across modules are
defined here. No magic numbers in other modules — import from here.
"""

# ─── Secret Store: crypto parameters ─────────────────────────────────────────

# Random salt prepended to every stored ciphertext (fresh per encrypt call).
SALT_SIZE_BYTES: int = 16

# AES-GCM nonce size (fresh per encrypt call, embedded after the salt).
NONCE_SIZE_BYTES: int = 12

# PBKDF2-HMAC-SHA256 iteration count for per-secret key derivation.
PBKDF2_ITERATIONS: int = 4096

# Derived key length: 32 bytes → AES-256.
DERIVED_KEY_BYTES: int = 32

# Size of an auto-generated master key (environment source, variable unset).
GENERATED_MASTER_KEY_BYTES: int = 32

# Master keys shorter than this are refused at construction.
MIN_MASTER_KEY_BYTES: int = 16

# Encryption-key secrets must decode to at least this many bytes.
MIN_ENCRYPTION_KEY_BYTES: int = 16

# API and bearer tokens shorter than this are refused by store().
MIN_TOKEN_LENGTH: int = 8

# ─── Secret Store: storage ────────────────────────────────────────────────────

SECRET_FILE_SUFFIX: str = ".secret"
KEY_HINT_FILENAME: str = ".key_hint"

# Bytes of the SHA-256 key digest written to the hint file (hex-encoded).
KEY_HINT_HASH_BYTES: int = 8

# Storage directory and secret files are owner-only.
STORAGE_DIR_MODE: int = 0o700
SECRET_FILE_MODE: int = 0o600

# Only the most recent N SecretAccess rows are retained.
ACCESS_LOG_MAX_ENTRIES: int = 1000

# Expired-secret sweep period (seconds).
ROTATION_CHECK_INTERVAL_S: float = 3600.0

# ─── Rate Limiter ─────────────────────────────────────────────────────────────

# Token refill is not recomputed more often than this (seconds).
MIN_REFILL_INTERVAL_S: float = 1.0

# Refill period for per-client buckets and the global window (seconds).
RATE_LIMIT_WINDOW_S: int = 60

# Clients refilled within this many seconds count as "active" in stats().
ACTIVE_CLIENT_WINDOW_S: float = 300.0

# ─── Request Validator ────────────────────────────────────────────────────────

# POST bodies on generic endpoints are capped at 1 MiB.
MAX_REQUEST_BODY_BYTES: int = 1_048_576

# Anomaly-detection sensitivity bounds (inclusive).
MIN_ANOMALY_SENSITIVITY: float = 0.1
MAX_ANOMALY_SENSITIVITY: float = 10.0

# ─── Audit Logger ─────────────────────────────────────────────────────────────

BYTES_PER_MB: int = 1024 * 1024

# Characters of a bearer token kept in the derived audit user id ("token:abcd1234").
AUDIT_USER_ID_TOKEN_PREFIX: int = 8
