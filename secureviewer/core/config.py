"""
Secure Configuration Module
===========================

Immutable, environment-aware configuration for the viewer core.

Sections:
- PathConfig: data, cache, log and temp-root directories
- SecurityConfig: key derivation, password policy, plaintext lifetime
- DiscoveryConfig: archive extension, scan cadence, index cache policy
- LoggingConfig / AppConfig

Every section is a frozen dataclass validated on construction, so an
invalid value fails at load time rather than deep inside an operation.
"""

from __future__ import annotations

import hashlib
import os
import platform
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Final, Any, Optional


APP_DIR_NAME: Final[str] = "SecureViewer"

_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "token", "api_key",
    "private", "credential", "auth", "salt",
})

# Runtime and system trees that never hold user archives.
DEFAULT_EXCLUDED_DIRS: Final[tuple[str, ...]] = (
    "/proc",
    "/sys",
    "/dev",
    "/run",
    "/snap",
    "/var/run",
    "/var/lock",
    "/private/var/vm",
    "/Library/Caches",
    "/System/Volumes",
)

_EXTRACTION_MODES: Final[frozenset[str]] = frozenset({"native", "subprocess"})


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Get OS-appropriate default data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:  # Linux and others
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / APP_DIR_NAME


def _get_default_cache_dir() -> Path:
    """Get OS-appropriate default cache directory (holds the archive index)."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / APP_DIR_NAME / "Cache"
    elif system == "darwin":
        return Path.home() / "Library" / "Caches" / APP_DIR_NAME
    else:  # Linux and others
        return Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache")) / APP_DIR_NAME


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / APP_DIR_NAME / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / APP_DIR_NAME
    else:  # Linux and others
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / APP_DIR_NAME / "logs"


def _get_default_temp_root() -> Path:
    """Platform temp root; workspaces are created directly beneath it."""
    return Path(tempfile.gettempdir())


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    cache_dir: Path = field(default_factory=_get_default_cache_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)
    temp_root: Path = field(default_factory=_get_default_temp_root)

    def __post_init__(self) -> None:
        """Validate paths after initialization."""
        for field_name in ["data_dir", "cache_dir", "log_dir", "temp_root"]:
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Immutable security configuration."""

    # Key derivation for newly written archives
    key_derivation_iterations: int = 600_000  # OWASP recommended for PBKDF2

    # Password policy for encryption
    min_password_length: int = 6

    # Plaintext lifetime
    auto_expiry_seconds: float = 600.0  # 10 minutes
    wipe_passes: int = 1

    # Archive interpretation
    extraction_mode: str = "native"
    extraction_timeout_seconds: float = 60.0
    output_window_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate security settings."""
        if self.key_derivation_iterations < 100_000:
            raise ValueError("Key derivation iterations must be at least 100,000")
        if self.min_password_length < 6:
            raise ValueError("Minimum password length must be at least 6")
        if self.auto_expiry_seconds <= 0:
            raise ValueError("Auto-expiry must be a positive number of seconds")
        if self.wipe_passes < 1:
            raise ValueError("At least one wipe pass is required")
        if self.extraction_mode not in _EXTRACTION_MODES:
            raise ValueError(f"Invalid extraction mode: {self.extraction_mode}")
        if self.extraction_timeout_seconds <= 0:
            raise ValueError("Extraction timeout must be positive")
        if self.output_window_seconds <= 0:
            raise ValueError("Output window must be positive")


@dataclass(frozen=True, slots=True)
class DiscoveryConfig:
    """Immutable archive discovery configuration."""

    archive_extension: str = ".senc"
    tick_interval_ms: int = 100
    max_cache_age_days: int = 7
    excluded_dirs: tuple[str, ...] = DEFAULT_EXCLUDED_DIRS
    watch_enabled: bool = True
    cache_filename: str = "file_cache.json"

    def __post_init__(self) -> None:
        """Validate discovery settings."""
        if not self.archive_extension.startswith(".") or len(self.archive_extension) < 2:
            raise ValueError(f"Invalid archive extension: {self.archive_extension}")
        if self.tick_interval_ms < 1:
            raise ValueError("Tick interval must be at least 1 ms")
        if self.max_cache_age_days < 0:
            raise ValueError("Cache age cannot be negative")
        if not self.cache_filename or "/" in self.cache_filename:
            raise ValueError(f"Invalid cache filename: {self.cache_filename}")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = True
    enable_json: bool = False

    def __post_init__(self) -> None:
        """Validate logging settings."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Immutable application configuration."""

    app_name: str = APP_DIR_NAME
    version: str = "0.1.0"
    debug_mode: bool = False

    def __post_init__(self) -> None:
        """Warn loudly if debug mode is switched on."""
        if self.debug_mode:
            import warnings
            warnings.warn(
                "Debug mode is enabled. This should NEVER be used in production.",
                SecurityWarning,
                stacklevel=2
            )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _declared_keys() -> frozenset[str]:
    """Every settable "section.field" key."""
    sections = {
        "paths": PathConfig,
        "security": SecurityConfig,
        "discovery": DiscoveryConfig,
        "logging": LoggingConfig,
    }
    return frozenset(
        f"{name}.{item.name}" for name, section in sections.items() for item in fields(section)
    )


class SecureConfig:
    """
    Centralized, immutable configuration loader with environment override support.

    Usage:
        config = SecureConfig.load()
        cache_dir = config.paths.cache_dir
        timeout = config.security.auto_expiry_seconds
    """

    __slots__ = ("_paths", "_security", "_discovery", "_logging", "_app", "_frozen", "_config_hash")

    _instance: Optional[SecureConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        security: Optional[SecurityConfig] = None,
        discovery: Optional[DiscoveryConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
    ) -> None:
        """Initialize configuration. Use SecureConfig.load() for standard initialization."""
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_security", security or SecurityConfig())
        object.__setattr__(self, "_discovery", discovery or DiscoveryConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_app", app or AppConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Compute a hash of the configuration for integrity checking."""
        config_str = f"{self._paths}|{self._security}|{self._discovery}|{self._logging}|{self._app}"
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def security(self) -> SecurityConfig:
        return self._security

    @property
    def discovery(self) -> DiscoveryConfig:
        return self._discovery

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def app(self) -> AppConfig:
        return self._app

    @property
    def config_hash(self) -> str:
        """Get configuration integrity hash."""
        return self._config_hash

    @property
    def cache_file(self) -> Path:
        """Location of the persisted archive index snapshot."""
        return self._paths.cache_dir / self._discovery.cache_filename

    @classmethod
    def load(cls, env_prefix: str = "SECUREVIEWER") -> SecureConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables are prefixed with SECUREVIEWER_ and use
        double underscores for nested values.

        Examples:
            SECUREVIEWER_LOGGING__LEVEL=DEBUG
            SECUREVIEWER_SECURITY__AUTO_EXPIRY_SECONDS=300
            SECUREVIEWER_PATHS__CACHE_DIR=/custom/path
            SECUREVIEWER_DISCOVERY__EXCLUDED_DIRS=/proc,/sys,node_modules

        Args:
            env_prefix: Prefix for environment variables

        Returns:
            Configured SecureConfig instance
        """
        env_overrides = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "cache_dir", "log_dir", "temp_root"):
            if f"paths.{name}" in env_overrides:
                paths_kwargs[name] = Path(env_overrides[f"paths.{name}"])

        security_kwargs: dict[str, Any] = {}
        for name in ("key_derivation_iterations", "min_password_length", "wipe_passes"):
            if f"security.{name}" in env_overrides:
                security_kwargs[name] = int(env_overrides[f"security.{name}"])
        for name in ("auto_expiry_seconds", "extraction_timeout_seconds", "output_window_seconds"):
            if f"security.{name}" in env_overrides:
                security_kwargs[name] = float(env_overrides[f"security.{name}"])
        if "security.extraction_mode" in env_overrides:
            security_kwargs["extraction_mode"] = env_overrides["security.extraction_mode"].lower()

        discovery_kwargs: dict[str, Any] = {}
        if "discovery.archive_extension" in env_overrides:
            discovery_kwargs["archive_extension"] = env_overrides["discovery.archive_extension"]
        for name in ("tick_interval_ms", "max_cache_age_days"):
            if f"discovery.{name}" in env_overrides:
                discovery_kwargs[name] = int(env_overrides[f"discovery.{name}"])
        if "discovery.watch_enabled" in env_overrides:
            discovery_kwargs["watch_enabled"] = _parse_bool(env_overrides["discovery.watch_enabled"])
        if "discovery.excluded_dirs" in env_overrides:
            discovery_kwargs["excluded_dirs"] = tuple(
                item.strip()
                for item in env_overrides["discovery.excluded_dirs"].split(",")
                if item.strip()
            )

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in env_overrides:
            logging_kwargs["level"] = env_overrides["logging.level"]
        for name in ("enable_console", "enable_file", "enable_json"):
            if f"logging.{name}" in env_overrides:
                logging_kwargs[name] = _parse_bool(env_overrides[f"logging.{name}"])

        # debug_mode cannot be overridden via env
        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            security=SecurityConfig(**security_kwargs) if security_kwargs else None,
            discovery=DiscoveryConfig(**discovery_kwargs) if discovery_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"
        declared = _declared_keys()

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # SECUREVIEWER_SECTION__KEY -> section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # Declared settings such as min_password_length hold no secrets
                if _is_sensitive_key(config_key) and config_key not in declared:
                    continue

                overrides[config_key] = value

        return overrides

    @classmethod
    def get_instance(cls) -> SecureConfig:
        """Get or create the singleton configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance. Use only for testing."""
        cls._instance = None

    def ensure_directories(self) -> None:
        """Create the application directories with owner-only permissions."""
        import stat

        directories = [
            self._paths.data_dir,
            self._paths.cache_dir,
            self._paths.log_dir,
        ]

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)  # 700

    def __repr__(self) -> str:
        return f"SecureConfig(hash={self._config_hash}, app={self._app.app_name})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("SecureConfig is immutable after initialization")
        super().__setattr__(name, value)


class SecurityWarning(UserWarning):
    """Warning for security-related configuration issues."""
    pass
