"""Type coercion and validation for environment configuration.

Loads environment variables according to ConfigSchema. Errors carry the
variable name and raw value so users can fix their environment quickly.
"""

import os
from typing import Any

from src.core.config.schema import ConfigSchema, EnvVarSpec


class ConfigError(Exception):
    """Environment variable validation error.

    Attributes:
        env_var: The environment variable name
        value: The raw value that failed validation
        message: Human-readable error message
    """

    def __init__(self, env_var: str, value: str, message: str) -> None:
        self.env_var = env_var
        self.value = value
        self.message = message
        super().__init__(f"{env_var}={value}: {message}")


def _parse_bool(value: str) -> bool:
    """True for "true", "1", "yes" or "on" (case-insensitive)."""
    return value.strip().lower() in ("true", "1", "yes", "on")


def _coerce(spec: EnvVarSpec, raw_value: str) -> Any:
    if spec.coerce is not None:
        return spec.coerce(raw_value)
    if spec.type_hint is bool:
        return _parse_bool(raw_value)
    if spec.type_hint is int:
        return int(raw_value)
    if spec.type_hint is float:
        return float(raw_value)
    return raw_value


def load_env_var(spec: EnvVarSpec) -> Any:
    """Load and validate a single environment variable.

    Unset or blank variables yield the spec default, which is not validated.

    Raises:
        ConfigError: If validation fails or type conversion is impossible
    """
    raw_value = os.environ.get(spec.name)
    if raw_value is None or raw_value.strip() == "":
        return spec.default

    try:
        value = _coerce(spec, raw_value)
    except (ValueError, TypeError) as e:
        raise ConfigError(
            spec.name,
            raw_value,
            f"Cannot convert to {spec.type_hint.__name__}: {e}",
        ) from e

    if spec.validator is not None:
        try:
            valid = spec.validator(value)
        except (TypeError, AttributeError, IndexError) as e:
            raise ConfigError(spec.name, raw_value, f"Validation error: {e}") from e
        if not valid:
            raise ConfigError(
                spec.name,
                raw_value,
                f"Validation failed for type {spec.type_hint.__name__}",
            )

    return value


def load_all_specs() -> dict[str, Any]:
    """Load every schema variable, collecting failures instead of raising.

    Values that failed validation are returned as ConfigError instances.
    """
    result: dict[str, Any] = {}
    for name, spec in ConfigSchema.all_specs().items():
        try:
            result[name] = load_env_var(spec)
        except ConfigError as e:
            result[name] = e
    return result


def validate_all() -> list[ConfigError]:
    """Validate all environment variables and return any errors.

    Example:
        errors = validate_all()
        if errors:
            for error in errors:
                print(f"Configuration error: {error}")
            sys.exit(1)
    """
    return [value for value in load_all_specs().values() if isinstance(value, ConfigError)]
