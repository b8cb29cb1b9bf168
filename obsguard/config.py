"""Config loading for obsguard.

Reads ``.obsguard/config.yaml`` (or ``~/.obsguard/config.yaml``).
Raises ConfigError on parse errors, a missing ``version`` field, or any value
the coercion layer cannot convert. If no config file is found, returns
default values (safe to run without config).

Config search order:
  1. ``config_path`` argument (if provided — for testing or explicit override)
  2. OBSGUARD_CONFIG environment variable (if set)
  3. ``.obsguard/config.yaml`` (working directory — for development)
  4. ``~/.obsguard/config.yaml`` (home directory — for production deployments)

Environment variable overrides:
  OBSGUARD_AUDIT_LOG_FILE — overrides audit.log_file
  OBSGUARD_AUTH_TOKEN     — overrides auth.token

Resolution is presence-based: each section starts from its defaults and only
keys that appear in the raw mapping replace them. A value of ``0`` or ``""``
in the file is therefore a real value, checked by that section's validate().
Keys may be written in snake_case or camelCase.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping, Optional

import yaml

from obsguard.errors import ConfigError
from obsguard.utils.durations import parse_duration
from obsguard.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1
SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_MASTER_KEY_SOURCES: frozenset[str] = frozenset({"environment", "file"})
VALID_CLIENT_ID_METHODS: frozenset[str] = frozenset({"ip", "token", "user-agent", "header"})
VALID_AUDIT_LOG_LEVELS: frozenset[str] = frozenset({"info", "warn", "error"})

DEFAULT_CONFIG_PATHS = [
    ".obsguard/config.yaml",
    os.path.expanduser("~/.obsguard/config.yaml"),
]

# camelCase spellings that don't follow mechanically from the snake_case name
_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "max_file_size_mb": ("maxFileSizeMB",),
    "rate_limit": ("rateLimit",),
}

_MISSING = object()


# ─── Coercion layer ───────────────────────────────────────────────────────────
# Each coercer accepts a small set of source representations and raises
# ConfigError for everything else (fail closed). bool is checked before int
# everywhere because bool is an int subclass.

_TRUE_STRINGS = frozenset({"1", "t", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "f", "false", "no", "off"})


def coerce_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigError(f"{key}: cannot parse {value!r} as bool")


def coerce_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key}: cannot parse bool as int")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigError(f"{key}: cannot parse {value!r} as int")


def coerce_float(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key}: cannot parse bool as float")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ConfigError(f"{key}: cannot parse {value!r} as float")


def coerce_duration(value: Any, key: str) -> timedelta:
    """timedelta as-is, numbers as seconds, strings like ``"10m"`` / ``"1h30m"``."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"{key}: cannot parse bool as duration")
    if isinstance(value, (int, float)):
        try:
            return timedelta(seconds=value)
        except OverflowError as exc:
            raise ConfigError(f"{key}: duration {value!r} is out of range") from exc
    if isinstance(value, str):
        try:
            return parse_duration(value)
        except ValueError as exc:
            raise ConfigError(f"{key}: {exc}") from exc
    raise ConfigError(f"{key}: cannot parse {type(value).__name__} as duration")


def coerce_str(value: Any, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"{key}: expected a string, got {type(value).__name__}")


def coerce_str_list(value: Any, key: str) -> tuple[str, ...]:
    """A list of strings, or one comma-separated string."""
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, (list, tuple)):
        items: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ConfigError(f"{key}: list items must be strings, got {type(item).__name__}")
            items.append(item.strip())
        return tuple(items)
    raise ConfigError(f"{key}: cannot parse {type(value).__name__} as string list")


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _lookup(raw: Mapping[str, Any], key: str) -> Any:
    for candidate in (key, _camel(key), *_KEY_ALIASES.get(key, ())):
        if candidate in raw:
            return raw[candidate]
    return _MISSING


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = _lookup(raw, key)
    if value is _MISSING or value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{key}: expected a mapping, got {type(value).__name__}")
    return value


def _resolve(defaults: Any, raw: Mapping[str, Any], prefix: str,
             coercers: Mapping[str, Callable[[Any, str], Any]]) -> Any:
    """Merge present keys of ``raw`` onto ``defaults`` through their coercers."""
    overrides: dict[str, Any] = {}
    for name, coerce in coercers.items():
        value = _lookup(raw, name)
        if value is not _MISSING:
            overrides[name] = coerce(value, f"{prefix}.{name}")
    resolved = dataclasses.replace(defaults, **overrides)
    resolved.validate()
    return resolved


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SecretStoreConfig:
    """Secret Store configuration.

    master_key_source: "environment" (base64 key in ``master_key_env``;
                       generated when the variable is unset) or "file"
                       (``master_key_path``, base64 or raw bytes).
    """

    storage_dir: str = "./data/secrets"
    encrypt_at_rest: bool = True
    require_encryption: bool = True
    allow_inline_secrets: bool = False
    master_key_source: str = "environment"
    master_key_path: str = ""
    master_key_env: str = "OBSERVABILITY_MASTER_KEY"
    enable_rotation: bool = True
    rotation_interval: timedelta = timedelta(hours=24)

    def validate(self) -> None:
        _require(bool(self.storage_dir), "secrets.storage_dir must not be empty")
        _require(
            self.master_key_source in VALID_MASTER_KEY_SOURCES,
            f"secrets.master_key_source: unsupported master key source "
            f"'{self.master_key_source}' (supported: {sorted(VALID_MASTER_KEY_SOURCES)})",
        )
        _require(bool(self.master_key_env), "secrets.master_key_env must not be empty")
        _require(
            self.rotation_interval > timedelta(0),
            "secrets.rotation_interval must be positive",
        )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SecretStoreConfig":
        return _resolve(cls(), raw, "secrets", {
            "storage_dir": coerce_str,
            "encrypt_at_rest": coerce_bool,
            "require_encryption": coerce_bool,
            "allow_inline_secrets": coerce_bool,
            "master_key_source": coerce_str,
            "master_key_path": coerce_str,
            "master_key_env": coerce_str,
            "enable_rotation": coerce_bool,
            "rotation_interval": coerce_duration,
        })


@dataclass(frozen=True)
class RateLimitConfig:
    """Token-bucket rate limiting configuration.

    requests_per_minute: bucket capacity and refill rate per client.
    burst_size:          tokens a brand-new client starts with.
    client_id_method:    "ip" | "token" | "user-agent" | "header".
    """

    requests_per_minute: int = 100
    enable_global_limit: bool = True
    global_requests_per_minute: int = 1000
    burst_size: int = 10
    cleanup_interval: timedelta = timedelta(minutes=10)
    client_id_method: str = "ip"
    client_id_header: str = ""

    def validate(self) -> None:
        _require(self.requests_per_minute > 0, "rate_limit.requests_per_minute must be positive")
        _require(self.burst_size > 0, "rate_limit.burst_size must be positive")
        _require(
            not self.enable_global_limit or self.global_requests_per_minute > 0,
            "rate_limit.global_requests_per_minute must be positive when the global limit is enabled",
        )
        _require(self.cleanup_interval > timedelta(0), "rate_limit.cleanup_interval must be positive")
        _require(
            self.client_id_method in VALID_CLIENT_ID_METHODS,
            f"rate_limit.client_id_method: unsupported method '{self.client_id_method}' "
            f"(supported: {sorted(VALID_CLIENT_ID_METHODS)})",
        )
        _require(
            self.client_id_method != "header" or bool(self.client_id_header),
            "rate_limit.client_id_header is required when client_id_method is 'header'",
        )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RateLimitConfig":
        return _resolve(cls(), raw, "rate_limit", {
            "requests_per_minute": coerce_int,
            "enable_global_limit": coerce_bool,
            "global_requests_per_minute": coerce_int,
            "burst_size": coerce_int,
            "cleanup_interval": coerce_duration,
            "client_id_method": coerce_str,
            "client_id_header": coerce_str,
        })


@dataclass(frozen=True)
class ValidationConfig:
    """Request validation configuration.

    Patterns are google-re2 expressions with search (unanchored) semantics.
    An empty allowed_metric_patterns list rejects every metric.
    """

    enabled: bool = True
    max_query_length: int = 10_000
    max_time_range: timedelta = timedelta(hours=24)
    allowed_metric_patterns: tuple[str, ...] = (".*",)
    blocked_metric_patterns: tuple[str, ...] = ()
    max_time_series: int = 10_000
    enable_complexity_validation: bool = True
    max_complexity_score: int = 100

    def validate(self) -> None:
        _require(self.max_query_length > 0, "validation.max_query_length must be positive")
        _require(self.max_time_range > timedelta(0), "validation.max_time_range must be positive")
        _require(self.max_time_series > 0, "validation.max_time_series must be positive")
        _require(self.max_complexity_score > 0, "validation.max_complexity_score must be positive")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ValidationConfig":
        return _resolve(cls(), raw, "validation", {
            "enabled": coerce_bool,
            "max_query_length": coerce_int,
            "max_time_range": coerce_duration,
            "allowed_metric_patterns": coerce_str_list,
            "blocked_metric_patterns": coerce_str_list,
            "max_time_series": coerce_int,
            "enable_complexity_validation": coerce_bool,
            "max_complexity_score": coerce_int,
        })


@dataclass(frozen=True)
class AuditConfig:
    """Audit trail configuration.

    log_file:         NDJSON destination; empty string means stdout.
    log_level:        "info" (everything) | "warn" (errors + status >= 400) | "error".
    max_file_size_mb: rotate when the file reaches this size; 0 disables rotation.
    include_bodies:   accepted for compatibility; bodies are never captured.
    """

    enabled: bool = True
    log_file: str = ""
    log_level: str = "info"
    max_file_size_mb: int = 100
    max_files: int = 5
    include_bodies: bool = False
    sensitive_only: bool = True
    log_headers: tuple[str, ...] = ("User-Agent", "X-Forwarded-For", "X-Real-IP")

    def validate(self) -> None:
        _require(
            self.log_level in VALID_AUDIT_LOG_LEVELS,
            f"audit.log_level: unsupported level '{self.log_level}' "
            f"(supported: {sorted(VALID_AUDIT_LOG_LEVELS)})",
        )
        _require(self.max_file_size_mb >= 0, "audit.max_file_size_mb must not be negative")
        _require(self.max_files >= 1, "audit.max_files must be at least 1")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AuditConfig":
        return _resolve(cls(), raw, "audit", {
            "enabled": coerce_bool,
            "log_file": coerce_str,
            "log_level": coerce_str,
            "max_file_size_mb": coerce_int,
            "max_files": coerce_int,
            "include_bodies": coerce_bool,
            "sensitive_only": coerce_bool,
            "log_headers": coerce_str_list,
        })


@dataclass(frozen=True)
class AuthConfig:
    """API bearer-token authentication.

    token_secret_ref names a Secret Store entry and wins over ``token``.
    Both empty → authentication disabled.
    """

    token: str = ""
    token_secret_ref: str = ""

    def validate(self) -> None:
        pass

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AuthConfig":
        return _resolve(cls(), raw, "auth", {
            "token": coerce_str,
            "token_secret_ref": coerce_str,
        })


@dataclass(frozen=True)
class SecurityConfig:
    """Root configuration object populated from .obsguard/config.yaml.

    All fields have safe defaults — obsguard can start without any config file.
    ``secrets`` is None when the file sets ``secrets: {enabled: false}``.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    secrets: Optional[SecretStoreConfig] = field(default_factory=SecretStoreConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "SecurityConfig":
        """Return a fully-default SecurityConfig (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], path: Optional[str] = None) -> "SecurityConfig":
        """Construct SecurityConfig from a parsed YAML mapping.

        Unknown keys are ignored. Raises ConfigError on any invalid value.
        """
        secrets_raw = dict(_section(raw, "secrets"))
        secrets_enabled = coerce_bool(secrets_raw.pop("enabled", True), "secrets.enabled")

        return cls(
            version=coerce_int(raw.get("version", SUPPORTED_CONFIG_VERSION), "version"),
            secrets=SecretStoreConfig.from_dict(secrets_raw) if secrets_enabled else None,
            rate_limit=RateLimitConfig.from_dict(_section(raw, "rate_limit")),
            validation=ValidationConfig.from_dict(_section(raw, "validation")),
            audit=AuditConfig.from_dict(_section(raw, "audit")),
            auth=AuthConfig.from_dict(_section(raw, "auth")),
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> SecurityConfig:
    """Load and validate obsguard configuration.

    If no file is found at any search path, returns defaults (not an error).
    Environment overrides are applied in both cases.

    Raises:
        ConfigError: On YAML parse error, unreadable file, non-mapping
                     document, missing or unsupported ``version``, or any
                     invalid section value.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("OBSGUARD_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        return _apply_env_overrides(SecurityConfig.defaults())

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {found_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read {found_path}: {exc}") from exc

    if raw is None:
        raise ConfigError(
            f"{found_path} is missing the required 'version' field. "
            "Add 'version: 1' to the top of your config file."
        )
    if not isinstance(raw, dict):
        raise ConfigError(
            f"{found_path} is not a valid YAML mapping. "
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        raise ConfigError(
            f"{found_path} is missing the required 'version' field. "
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        raise ConfigError(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = _apply_env_overrides(SecurityConfig.from_dict(raw, path=found_path))

    if config.secrets is not None and config.secrets.allow_inline_secrets:
        logger.warning(
            "SECURITY WARNING: inline secrets are allowed. "
            "Credentials written directly into config files end up in backups and VCS."
        )
    if config.secrets is not None and not (
        config.secrets.encrypt_at_rest or config.secrets.require_encryption
    ):
        logger.warning("SECURITY WARNING: secrets will be stored on disk in plaintext")

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        secrets_enabled=config.secrets is not None,
        validation_enabled=config.validation.enabled,
        audit_enabled=config.audit.enabled,
    )
    return config


def _apply_env_overrides(config: SecurityConfig) -> SecurityConfig:
    """Return ``config`` with environment variable overrides applied.

    Handles:
      OBSGUARD_AUDIT_LOG_FILE — replaces audit.log_file
      OBSGUARD_AUTH_TOKEN     — replaces auth.token
    """
    env_log_file = os.environ.get("OBSGUARD_AUDIT_LOG_FILE")
    if env_log_file is not None:
        config = dataclasses.replace(
            config, audit=dataclasses.replace(config.audit, log_file=env_log_file)
        )

    env_token = os.environ.get("OBSGUARD_AUTH_TOKEN")
    if env_token is not None:
        config = dataclasses.replace(
            config, auth=dataclasses.replace(config.auth, token=env_token)
        )
    return config
