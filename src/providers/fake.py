"""
Fake Firewall Provider - In-memory provider for tests and dry runs.

Mimics a cloud network that can optionally be shared from another project
(XPN) and read-only for the caller, in which case every mutation fails with
a forbidden error.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from providers.base import ErrorKind, Firewall, FirewallProvider, ProviderError

logger = logging.getLogger(__name__)

FAKE_PROJECT = "test-project"
FAKE_NETWORK_PROJECT = "xpn-host-project"
FAKE_NETWORK = "default"


class FakeFirewallProvider(FirewallProvider):
    """In-memory firewall store keyed by rule name."""

    def __init__(self, on_xpn: bool = False, read_only: bool = False):
        self._on_xpn = on_xpn
        self._read_only = read_only
        self._firewalls: Dict[str, Firewall] = {}
        # Successful mutations as (action, name)
        self.mutations: List[Tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def version(self) -> str:
        return "1.0.0"

    async def initialize(self, config: Dict[str, Any]) -> None:
        self._on_xpn = config.get("on_xpn", self._on_xpn)
        self._read_only = config.get("read_only", self._read_only)
        logger.debug(
            f"Fake provider initialized: on_xpn={self._on_xpn}, "
            f"read_only={self._read_only}"
        )

    async def get_firewall(self, name: str) -> Firewall:
        firewall = self._firewalls.get(name)
        if firewall is None:
            raise ProviderError(
                ErrorKind.NOT_FOUND, f"Firewall {name} not found", status_code=404
            )
        return firewall.model_copy(deep=True)

    async def create_firewall(self, firewall: Firewall) -> None:
        self._check_writable(firewall.name)
        self._do_create(firewall)
        self.mutations.append(("create", firewall.name))

    async def update_firewall(self, firewall: Firewall) -> None:
        self._check_writable(firewall.name)
        if firewall.name not in self._firewalls:
            raise ProviderError(
                ErrorKind.NOT_FOUND,
                f"Firewall {firewall.name} not found",
                status_code=404,
            )
        self._firewalls[firewall.name] = firewall.model_copy(deep=True)
        self.mutations.append(("update", firewall.name))

    async def delete_firewall(self, name: str) -> None:
        self._check_writable(name)
        if name not in self._firewalls:
            raise ProviderError(
                ErrorKind.NOT_FOUND, f"Firewall {name} not found", status_code=404
            )
        del self._firewalls[name]
        self.mutations.append(("delete", name))

    async def get_node_tags(self, node_names: Iterable[str]) -> Set[str]:
        return set(node_names)

    def network_url(self) -> str:
        return (
            f"https://www.googleapis.com/compute/v1/projects/"
            f"{self.network_project_id()}/global/networks/{FAKE_NETWORK}"
        )

    def network_project_id(self) -> str:
        return FAKE_NETWORK_PROJECT if self._on_xpn else FAKE_PROJECT

    def on_xpn(self) -> bool:
        return self._on_xpn

    async def do_create_firewall(self, firewall: Firewall) -> None:
        """Create a rule bypassing permission checks, like a network admin would."""
        self._do_create(firewall)

    def get_stored(self, name: str) -> Optional[Firewall]:
        return self._firewalls.get(name)

    def _do_create(self, firewall: Firewall) -> None:
        if firewall.name in self._firewalls:
            raise ProviderError(
                ErrorKind.BACKEND,
                f"Firewall {firewall.name} already exists",
                status_code=409,
            )
        self._firewalls[firewall.name] = firewall.model_copy(deep=True)

    def _check_writable(self, name: str) -> None:
        if self._on_xpn and self._read_only:
            raise ProviderError(
                ErrorKind.FORBIDDEN,
                f"Required 'compute.firewalls' permission for "
                f"'projects/{self.network_project_id()}/global/firewalls/{name}'",
                status_code=403,
            )
