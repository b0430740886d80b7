"""
Provider Registry - Discovery and registration of firewall providers.

This module provides the central registry for firewall providers, handling
discovery, registration, and instantiation.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, Optional, Type

from providers.base import FirewallProvider

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "fwsync.providers"


class ProviderRegistry:
    """
    Central registry for firewall providers.

    Handles registration of provider classes and instantiation of
    initialized provider instances by name.
    """

    def __init__(self):
        # Registered provider classes (not instantiated)
        self._providers: Dict[str, Type[FirewallProvider]] = {}

        # Cached provider metadata (name, version)
        self._provider_info: Dict[str, Dict[str, str]] = {}

        # Instantiated and initialized provider instances
        self._instances: Dict[str, FirewallProvider] = {}

        # Provider configurations loaded from environment
        self._provider_configs: Dict[str, Dict[str, Any]] = {}

    def register_provider(self, provider_class: Type[FirewallProvider]) -> None:
        """
        Register a provider class.

        Args:
            provider_class: The FirewallProvider subclass to register
        """
        temp_instance = provider_class()
        name = temp_instance.name
        version = temp_instance.version

        if name in self._providers:
            logger.warning(f"Overwriting existing provider: {name}")

        self._providers[name] = provider_class
        self._provider_info[name] = {"name": name, "version": version}
        self._provider_configs[name] = provider_class.load_config_from_env()
        logger.info(f"Registered firewall provider: {name} v{version}")

    async def get_provider(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> FirewallProvider:
        """
        Get an initialized provider instance.

        Args:
            name: The provider name to retrieve
            config: Optional configuration to pass to initialize()

        Returns:
            An initialized FirewallProvider instance

        Raises:
            ValueError: If the provider name is not registered
        """
        if name not in self._providers:
            available = ", ".join(self._providers.keys()) or "none"
            raise ValueError(
                f"Unknown firewall provider: {name}. Available providers: {available}"
            )

        if name not in self._instances:
            provider = self._providers[name]()
            await provider.initialize(config or {})
            self._instances[name] = provider
            logger.info(f"Initialized firewall provider: {name}")

        return self._instances[name]

    def list_providers(self) -> list[str]:
        """List all registered provider names."""
        return list(self._providers.keys())

    def has_provider(self, name: str) -> bool:
        """Check if a provider is registered."""
        return name in self._providers

    def get_provider_info(self, name: str) -> Optional[Dict[str, str]]:
        """Get 'name' and 'version' of a registered provider, or None."""
        return self._provider_info.get(name)

    def get_provider_config(self, name: str) -> Dict[str, Any]:
        """
        Get the environment-loaded configuration for a provider.

        Returns a copy so callers can merge overrides into it.
        """
        return dict(self._provider_configs.get(name, {}))


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """Get the global provider registry singleton."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_providers() -> None:
    """
    Register the built-in providers and discover third-party providers
    via entry points.
    """
    registry = get_registry()

    from providers.fake import FakeFirewallProvider
    from providers.gce import GCEFirewallProvider

    registry.register_provider(GCEFirewallProvider)
    registry.register_provider(FakeFirewallProvider)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register_provider(ep.load())
        except Exception as e:
            logger.warning(f"Could not load firewall provider {ep.name}: {e}")
