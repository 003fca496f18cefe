"""Configuration: environment settings, routing table and resolution."""

from src.core.config.resolver import ConfigResolver
from src.core.config.routing import (
    DEFAULT_ROUTING_TABLE,
    CapabilityPreference,
    GlobalSettings,
    ProviderConfig,
    RoutingTable,
    load_routing_table,
)
from src.core.config.settings import OrchestratorSettings, Settings
from src.core.config.validation import ConfigError, validate_all

__all__ = [
    "DEFAULT_ROUTING_TABLE",
    "CapabilityPreference",
    "ConfigError",
    "ConfigResolver",
    "GlobalSettings",
    "OrchestratorSettings",
    "ProviderConfig",
    "RoutingTable",
    "Settings",
    "load_routing_table",
    "validate_all",
]
