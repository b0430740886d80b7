"""
Firewall providers package.

Providers implement get/create/update/delete of a named firewall rule
against a cloud network (GCE, or the in-memory fake).
"""

from providers.base import (
    Allowed,
    ErrorKind,
    Firewall,
    FirewallProvider,
    ProviderError,
    is_forbidden,
    is_not_found,
)
from providers.registry import ProviderRegistry, get_registry

__all__ = [
    "Allowed",
    "ErrorKind",
    "Firewall",
    "FirewallProvider",
    "ProviderError",
    "is_forbidden",
    "is_not_found",
    "ProviderRegistry",
    "get_registry",
]
