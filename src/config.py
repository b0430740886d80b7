"""
Configuration module for the firewall controller.

Loads configuration from environment variables. Provider-specific settings
come from each provider's own ``load_config_from_env`` and can be
overridden through ``PROVIDER_CONFIGS``.
"""

import ipaddress
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from firewalls import DEFAULT_DESCRIPTION, L7_SRC_RANGES


def parse_source_ranges(value: str) -> List[str]:
    """Split a comma separated CIDR list, rejecting anything unparsable."""
    ranges = [r.strip() for r in value.split(",") if r.strip()]
    if not ranges:
        raise ValueError("L7_SRC_RANGES must contain at least one CIDR block")
    for cidr in ranges:
        try:
            ipaddress.ip_network(cidr, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid CIDR in L7_SRC_RANGES: {cidr}") from e
    return ranges


@dataclass
class FirewallConfig:
    """Firewall rule configuration."""

    provider: str = "gce"
    source_ranges: List[str] = field(default_factory=lambda: list(L7_SRC_RANGES))
    description: str = DEFAULT_DESCRIPTION

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        src_ranges = os.getenv("L7_SRC_RANGES")
        return cls(
            provider=os.getenv("FIREWALL_PROVIDER", "gce"),
            source_ranges=(
                parse_source_ranges(src_ranges)
                if src_ranges
                else list(L7_SRC_RANGES)
            ),
            description=os.getenv("FIREWALL_DESCRIPTION", DEFAULT_DESCRIPTION),
        )


@dataclass
class NamerConfig:
    """Cluster identity used to name managed resources."""

    cluster_name: str = ""
    firewall_name: str = ""

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            cluster_name=os.getenv("CLUSTER_NAME", ""),
            firewall_name=os.getenv("FIREWALL_NAME", ""),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class ProviderConfig:
    """Provider overrides keyed by provider name."""

    provider_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        provider_configs = {}
        if os.getenv("PROVIDER_CONFIGS"):
            try:
                provider_configs = json.loads(os.getenv("PROVIDER_CONFIGS"))
            except json.JSONDecodeError:
                pass

        return cls(provider_configs=provider_configs)

    def get_provider_config(self, provider_name: str) -> Dict[str, Any]:
        """Get configuration overrides for a specific provider."""
        return self.provider_configs.get(provider_name, {})


@dataclass
class Config:
    """Main configuration object."""

    firewall: FirewallConfig
    namer: NamerConfig
    logging: LoggingConfig
    providers: ProviderConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            firewall=FirewallConfig.from_env(),
            namer=NamerConfig.from_env(),
            logging=LoggingConfig.from_env(),
            providers=ProviderConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            firewall=FirewallConfig(),
            namer=NamerConfig(),
            logging=LoggingConfig(),
            providers=ProviderConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
