"""Declarative schema for environment variable configuration.

This module is the single source of truth for every environment variable
the orchestrator reads, including type coercion, validation and the
generated documentation shown by ``aiorch config docs``.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EnvVarSpec:
    """Specification for a single environment variable.

    Attributes:
        name: Environment variable name (e.g., "LOG_LEVEL")
        default: Default value if env var not set
        type_hint: Type for validation (int, str, float, bool)
        description: Human-readable description for docs
        validator: Optional custom validation function
        coerce: Optional function to convert string to target type
    """

    name: str
    default: Any
    type_hint: type
    description: str
    validator: Callable[[Any], bool] | None = None
    coerce: Callable[[str], Any] | None = None


class ConfigSchema:
    """Registry of all configuration environment variables."""

    # === Files & Directories ===

    CONFIG_FILE = EnvVarSpec(
        name="AIORCH_CONFIG_FILE",
        default=None,
        type_hint=str,
        description="Path to the JSON routing table (built-in defaults when unset)",
    )

    CACHE_DIR = EnvVarSpec(
        name="AIORCH_CACHE_DIR",
        default=None,
        type_hint=str,
        description="Root directory for audio/image/model caches (default ~/.cache/ai-orchestrator)",
    )

    PREFERENCES_FILE = EnvVarSpec(
        name="AIORCH_PREFERENCES_FILE",
        default=None,
        type_hint=str,
        description="JSON file holding per-capability user selections (default <cache dir>/preferences.json)",
    )

    LOG_LEVEL = EnvVarSpec(
        name="LOG_LEVEL",
        default="INFO",
        type_hint=str,
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        validator=lambda x: x.split()[0].upper() in ["DEBUG", "INFO", "WARN", "WARNING", "ERROR", "CRITICAL"],
    )

    # === Caching ===

    CACHE_MAX_SIZE = EnvVarSpec(
        name="AIORCH_CACHE_MAX_SIZE",
        default=1000,
        type_hint=int,
        description="Maximum entries held by the in-memory response cache",
        validator=lambda x: x > 0,
    )

    CACHE_TTL_MINUTES = EnvVarSpec(
        name="AIORCH_CACHE_TTL_MINUTES",
        default=None,
        type_hint=int,
        description="Time-to-live of in-memory response cache entries (default: routing table tts_cache_duration_hours)",
        validator=lambda x: x > 0,
    )

    PERSISTENT_CACHE_DAYS = EnvVarSpec(
        name="AIORCH_PERSISTENT_CACHE_DAYS",
        default=7,
        type_hint=int,
        description="Age after which on-disk audio/model/voice cache records expire",
        validator=lambda x: x > 0,
    )

    # === Timeouts & Initialization ===

    REQUEST_TIMEOUT = EnvVarSpec(
        name="AIORCH_REQUEST_TIMEOUT",
        default=30.0,
        type_hint=float,
        description="Per-request timeout in seconds for provider HTTP calls",
        validator=lambda x: x > 0,
    )

    INIT_WAIT_ATTEMPTS = EnvVarSpec(
        name="AIORCH_INIT_WAIT_ATTEMPTS",
        default=50,
        type_hint=int,
        description="Polls to wait for a concurrent initialize() before giving up",
        validator=lambda x: x > 0,
    )

    INIT_WAIT_INTERVAL_MS = EnvVarSpec(
        name="AIORCH_INIT_WAIT_INTERVAL_MS",
        default=100,
        type_hint=int,
        description="Delay between initialization polls in milliseconds",
        validator=lambda x: x > 0,
    )

    # === Retry & Circuit Breaker ===

    RETRY_MAX_ATTEMPTS = EnvVarSpec(
        name="AIORCH_RETRY_MAX_ATTEMPTS",
        default=None,
        type_hint=int,
        description="Maximum attempts per provider before falling back (default: routing table max_retries)",
        validator=lambda x: x >= 1,
    )

    RETRY_INITIAL_DELAY_MS = EnvVarSpec(
        name="AIORCH_RETRY_INITIAL_DELAY_MS",
        default=None,
        type_hint=int,
        description="Delay before the first retry in milliseconds (default: routing table retry_delay_seconds)",
        validator=lambda x: x >= 0,
    )

    RETRY_MAX_DELAY_MS = EnvVarSpec(
        name="AIORCH_RETRY_MAX_DELAY_MS",
        default=30000,
        type_hint=int,
        description="Upper bound for the backoff delay in milliseconds",
        validator=lambda x: x >= 0,
    )

    CIRCUIT_FAILURE_THRESHOLD = EnvVarSpec(
        name="AIORCH_CIRCUIT_FAILURE_THRESHOLD",
        default=5,
        type_hint=int,
        description="Failures within the window that open a provider's circuit",
        validator=lambda x: x >= 1,
    )

    CIRCUIT_RECOVERY_TIMEOUT_MS = EnvVarSpec(
        name="AIORCH_CIRCUIT_RECOVERY_TIMEOUT_MS",
        default=60000,
        type_hint=int,
        description="Time an open circuit waits before allowing half-open trial calls",
        validator=lambda x: x >= 0,
    )

    @classmethod
    def all_specs(cls) -> dict[str, EnvVarSpec]:
        """Get all environment variable specifications.

        Returns:
            Dictionary mapping spec names to EnvVarSpec objects
        """
        return {
            name: getattr(cls, name)
            for name in dir(cls)
            if isinstance(getattr(cls, name), EnvVarSpec)
        }

    @classmethod
    def get_spec(cls, name: str) -> EnvVarSpec | None:
        """Get specification for a specific env var by name.

        Args:
            name: The environment variable name (e.g., "LOG_LEVEL")

        Returns:
            EnvVarSpec if found, None otherwise
        """
        for spec in cls.all_specs().values():
            if spec.name == name:
                return spec
        return None

    @classmethod
    def generate_markdown_docs(cls) -> str:
        """Generate Markdown documentation for all environment variables."""
        lines = ["# Configuration Options\n", "## Environment Variables\n"]

        for _name, spec in sorted(cls.all_specs().items()):
            default_repr = f"`{spec.default}`" if spec.default is not None else "None"
            lines.extend(
                [
                    f"### `{spec.name}`\n",
                    f"- **Type**: `{spec.type_hint.__name__}`",
                    f"- **Default**: {default_repr}",
                    f"- **Description**: {spec.description}\n",
                ]
            )

        return "\n".join(lines)
