"""Process-level settings loaded from environment variables.

Uses schema-based loading for automatic type coercion and validation.
"""

from dataclasses import dataclass
from pathlib import Path

from src.core.config.routing import GlobalSettings
from src.core.config.schema import ConfigSchema
from src.core.config.validation import load_env_var
from src.core.resilience.circuit_breaker import CircuitBreakerConfig
from src.core.resilience.retry import RetryConfig

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "ai-orchestrator"


@dataclass(frozen=True)
class OrchestratorSettings:
    """Immutable environment configuration for one orchestrator process.

    Attributes:
        config_file: Routing table path, or None for the built-in table
        cache_dir: Root for audio/, images/, models/ and voices/ caches
        preferences_file: JSON file backing user capability selections
        log_level: Raw LOG_LEVEL value
        cache_max_size: In-memory response cache capacity
        cache_ttl_minutes: In-memory response cache TTL; None defers to the
            routing table's tts_cache_duration_hours
        persistent_cache_days: Expiry of on-disk cache records
        request_timeout: Provider HTTP timeout in seconds
        init_wait_attempts: Polls while another caller initializes
        init_wait_interval_ms: Delay between those polls
        retry_max_attempts: Attempts per provider; None defers to the routing
            table's max_retries
        retry_initial_delay_ms: First backoff delay; None defers to the
            routing table's retry_delay_seconds
    """

    config_file: Path | None
    cache_dir: Path
    preferences_file: Path
    log_level: str
    cache_max_size: int
    cache_ttl_minutes: int | None
    persistent_cache_days: int
    request_timeout: float
    init_wait_attempts: int
    init_wait_interval_ms: int
    retry_max_attempts: int | None
    retry_initial_delay_ms: int | None
    retry_max_delay_ms: int
    circuit_failure_threshold: int
    circuit_recovery_timeout_ms: int

    def retry_config(self, table_settings: GlobalSettings | None = None) -> RetryConfig:
        """Retry policy; environment values win over the routing table's."""
        table_settings = table_settings or GlobalSettings()
        max_attempts = self.retry_max_attempts
        if max_attempts is None:
            max_attempts = max(1, table_settings.max_retries)
        initial_delay_ms = self.retry_initial_delay_ms
        if initial_delay_ms is None:
            initial_delay_ms = table_settings.retry_delay_seconds * 1000
        return RetryConfig(
            max_attempts=max_attempts,
            initial_delay_ms=initial_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
        )

    def memory_cache_ttl_minutes(self, table_settings: GlobalSettings | None = None) -> int:
        if self.cache_ttl_minutes is not None:
            return self.cache_ttl_minutes
        return (table_settings or GlobalSettings()).tts_cache_duration_hours * 60

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_failure_threshold,
            recovery_timeout_ms=self.circuit_recovery_timeout_ms,
            timeout_ms=int(self.request_timeout * 1000),
        )


class Settings:
    """Loads OrchestratorSettings from the environment."""

    @staticmethod
    def load() -> OrchestratorSettings:
        """Load settings using schema-based validation.

        Raises:
            ConfigError: If any environment variable fails validation
        """
        config_file = load_env_var(ConfigSchema.CONFIG_FILE)
        cache_dir_raw = load_env_var(ConfigSchema.CACHE_DIR)
        cache_dir = Path(cache_dir_raw).expanduser() if cache_dir_raw else DEFAULT_CACHE_DIR
        preferences_raw = load_env_var(ConfigSchema.PREFERENCES_FILE)
        preferences_file = (
            Path(preferences_raw).expanduser()
            if preferences_raw
            else cache_dir / "preferences.json"
        )

        return OrchestratorSettings(
            config_file=Path(config_file).expanduser() if config_file else None,
            cache_dir=cache_dir,
            preferences_file=preferences_file,
            log_level=load_env_var(ConfigSchema.LOG_LEVEL),
            cache_max_size=load_env_var(ConfigSchema.CACHE_MAX_SIZE),
            cache_ttl_minutes=load_env_var(ConfigSchema.CACHE_TTL_MINUTES),
            persistent_cache_days=load_env_var(ConfigSchema.PERSISTENT_CACHE_DAYS),
            request_timeout=load_env_var(ConfigSchema.REQUEST_TIMEOUT),
            init_wait_attempts=load_env_var(ConfigSchema.INIT_WAIT_ATTEMPTS),
            init_wait_interval_ms=load_env_var(ConfigSchema.INIT_WAIT_INTERVAL_MS),
            retry_max_attempts=load_env_var(ConfigSchema.RETRY_MAX_ATTEMPTS),
            retry_initial_delay_ms=load_env_var(ConfigSchema.RETRY_INITIAL_DELAY_MS),
            retry_max_delay_ms=load_env_var(ConfigSchema.RETRY_MAX_DELAY_MS),
            circuit_failure_threshold=load_env_var(ConfigSchema.CIRCUIT_FAILURE_THRESHOLD),
            circuit_recovery_timeout_ms=load_env_var(ConfigSchema.CIRCUIT_RECOVERY_TIMEOUT_MS),
        )
