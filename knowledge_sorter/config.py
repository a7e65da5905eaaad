"""Configuration for Knowledge Sorter.

Simple dataclass-based configuration with sensible defaults.
Override via environment variables with KNOWLEDGE_SORTER_ prefix.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

from knowledge_sorter.log_config import get_logger

log = get_logger("config")

# Load .env file if present
_pkg_dir = Path(__file__).parent.parent
_env_loaded = load_dotenv(_pkg_dir / ".env")
log.debug(f"Loaded .env file: {_env_loaded}")


ENV_PREFIX = "KNOWLEDGE_SORTER_"


def _get_env(key: str, default: str) -> str:
    """Get environment variable with KNOWLEDGE_SORTER_ prefix."""
    return os.getenv(f"{ENV_PREFIX}{key}", default)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get boolean environment variable."""
    val = os.getenv(f"{ENV_PREFIX}{key}")
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")


def _get_env_optional(key: str) -> str | None:
    val = os.getenv(f"{ENV_PREFIX}{key}")
    return val or None


def _get_env_path(key: str) -> Path | None:
    val = _get_env_optional(key)
    return Path(val) if val else None


class SecurityMode(str, Enum):
    """Security mode determines default API settings.

    DEV: No authentication, verbose errors, localhost binding
    PROD: API key required when configured, sanitized errors (default)
    """

    DEV = "dev"
    PROD = "prod"


@dataclass
class Config:
    """Knowledge Sorter configuration.

    Attributes:
        data_dir: Directory for the SQLite database (default: ~/.knowledge_sorter)
        db_filename: Database file name inside data_dir
        fallback_project: Project the signal scorer falls back to (default: none)
        router_interval_seconds: Extraction router tick (default: 30s)
        router_batch_size: Extractions processed per tick (default: 50)
        sweep_interval_seconds: Dedup/retention sweep tick (default: 30 min)
        capture_url: Base URL of the upstream capture service
    """

    data_dir: Path = field(
        default_factory=lambda: Path(_get_env("DATA_DIR", str(Path.home() / ".knowledge_sorter")))
    )
    db_filename: str = field(default_factory=lambda: _get_env("DB_FILENAME", "knowledge.db"))

    # Attribution
    fallback_project: str | None = field(
        default_factory=lambda: _get_env_optional("FALLBACK_PROJECT")
    )
    signatures_file: Path | None = field(default_factory=lambda: _get_env_path("SIGNATURES_FILE"))
    legacy_roots_file: Path | None = field(
        default_factory=lambda: _get_env_path("LEGACY_ROOTS_FILE")
    )

    # Noise filter bounds
    min_content_length: int = field(
        default_factory=lambda: int(_get_env("MIN_CONTENT_LENGTH", "10"))
    )
    max_content_length: int = field(
        default_factory=lambda: int(_get_env("MAX_CONTENT_LENGTH", "5000"))
    )

    # Extraction router schedule
    router_enabled: bool = field(default_factory=lambda: _get_env_bool("ROUTER_ENABLED", True))
    router_interval_seconds: float = field(
        default_factory=lambda: float(_get_env("ROUTER_INTERVAL_SECONDS", "30"))
    )
    router_initial_delay_seconds: float = field(
        default_factory=lambda: float(_get_env("ROUTER_INITIAL_DELAY_SECONDS", "0"))
    )
    router_batch_size: int = field(
        default_factory=lambda: int(_get_env("ROUTER_BATCH_SIZE", "50"))
    )

    # Dedup/retention sweep schedule
    sweep_enabled: bool = field(default_factory=lambda: _get_env_bool("SWEEP_ENABLED", True))
    sweep_interval_seconds: float = field(
        default_factory=lambda: float(_get_env("SWEEP_INTERVAL_SECONDS", str(30 * 60)))
    )
    sweep_initial_delay_seconds: float = field(
        default_factory=lambda: float(_get_env("SWEEP_INITIAL_DELAY_SECONDS", "60"))
    )

    # Retention windows (days)
    empty_session_retention_days: float = field(
        default_factory=lambda: float(_get_env("EMPTY_SESSION_RETENTION_DAYS", "1"))
    )
    completed_message_retention_days: float = field(
        default_factory=lambda: float(_get_env("COMPLETED_MESSAGE_RETENTION_DAYS", "14"))
    )
    message_prune_batch_size: int = field(
        default_factory=lambda: int(_get_env("MESSAGE_PRUNE_BATCH_SIZE", "100"))
    )

    # Capture service (sibling, optional)
    capture_url: str | None = field(default_factory=lambda: _get_env_optional("CAPTURE_URL"))
    capture_timeout_seconds: float = field(
        default_factory=lambda: float(_get_env("CAPTURE_TIMEOUT_SECONDS", "5"))
    )

    # HTTP surface
    mode: SecurityMode = field(
        default_factory=lambda: (
            SecurityMode.DEV if _get_env("MODE", "prod").lower() == "dev" else SecurityMode.PROD
        )
    )
    host: str | None = field(default_factory=lambda: _get_env_optional("HOST"))
    port: int = field(default_factory=lambda: int(_get_env("PORT", "5403")))
    api_key: str | None = field(default_factory=lambda: _get_env_optional("API_KEY"))

    def __post_init__(self):
        """Ensure paths are Path objects and directories exist."""
        log.trace("Initializing Config")

        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        if isinstance(self.signatures_file, str):
            self.signatures_file = Path(self.signatures_file)
        if isinstance(self.legacy_roots_file, str):
            self.legacy_roots_file = Path(self.legacy_roots_file)
        if isinstance(self.mode, str):
            self.mode = SecurityMode(self.mode)
        if self.host is None:
            self.host = "127.0.0.1" if self.mode == SecurityMode.DEV else "0.0.0.0"

        self.data_dir.mkdir(parents=True, exist_ok=True)

        log.debug(f"data_dir={self.data_dir}")
        log.debug(f"fallback_project={self.fallback_project}")
        log.debug(
            f"router: every {self.router_interval_seconds}s, batch={self.router_batch_size}"
        )
        log.debug(f"sweep: every {self.sweep_interval_seconds}s")
        log.debug(f"capture_url={self.capture_url}")
        log.info(f"Config initialized: db={self.db_path}, mode={self.mode.value}")

    @property
    def db_path(self) -> Path:
        """SQLite database file."""
        return self.data_dir / self.db_filename

    @property
    def require_auth(self) -> bool:
        """API key auth applies in prod mode when a key is configured."""
        return self.mode == SecurityMode.PROD and bool(self.api_key)

    @property
    def verbose_errors(self) -> bool:
        return self.mode == SecurityMode.DEV


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Reset config for testing."""
    global _config
    _config = None
