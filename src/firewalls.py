"""
Firewall Pool - Reconciles the L7 load-balancer firewall rule.

Keeps a single cloud firewall rule in line with the node ports that must be
reachable and the nodes that serve them. Each sync re-reads the rule,
diffs it against the desired state, and issues at most one mutation.

On a shared (XPN) network the controller usually lacks write access. Such
mutations fail with FirewallSyncError, which names the attempted action and
carries the gcloud command the network admin has to run instead.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from numbers import Integral
from typing import Awaitable, Callable, FrozenSet, Iterable, Optional, Set

import gcloud
from namer import Namer
from providers.base import (
    Allowed,
    ErrorKind,
    Firewall,
    FirewallProvider,
    ProviderError,
    is_forbidden,
    is_not_found,
)

logger = logging.getLogger(__name__)

# Published source ranges of the Google L7 load balancers and health checkers
L7_SRC_RANGES = ("130.211.0.0/22", "35.191.0.0/16")

DEFAULT_DESCRIPTION = "L7 load balancer firewall rule"

MIN_PORT = 1
MAX_PORT = 65535

HostTargets = Callable[[Set[str]], Awaitable[Set[str]]]


class SyncAction(str, Enum):
    """Mutations the pool can issue."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FirewallSyncError(Exception):
    """
    Raised when a firewall mutation is forbidden.

    The message is meant for operators as-is: it names the action, the rule
    and the gcloud command that applies the change out of band.
    """

    kind = ErrorKind.FORBIDDEN

    def __init__(self, action: SyncAction, name: str, message: str, command: str = ""):
        self.action = action
        self.name = name
        self.message = message
        self.command = command
        super().__init__(message)


@dataclass(frozen=True)
class DesiredState:
    """What the firewall rule should look like after a sync."""

    name: str
    ports: FrozenSet[int]
    targets: FrozenSet[str]
    source_ranges: FrozenSet[str]

    @property
    def port_strings(self) -> FrozenSet[str]:
        return frozenset(str(p) for p in self.ports)


def normalize_ports(ports: Iterable[int]) -> FrozenSet[int]:
    """Collapse ports into a set, rejecting values that are not TCP ports."""
    result = set()
    for port in ports:
        if isinstance(port, bool) or not isinstance(port, Integral):
            raise ValueError(f"Invalid port {port!r}: must be an integer")
        if not MIN_PORT <= port <= MAX_PORT:
            raise ValueError(
                f"Invalid port {port}: must be between {MIN_PORT} and {MAX_PORT}"
            )
        result.add(int(port))
    return frozenset(result)


def needs_update(existing: Firewall, desired: DesiredState) -> bool:
    """
    Whether the existing rule has drifted from the desired state.

    Only the managed tcp ports and the source ranges are compared. Target
    tags never force an update on their own; they are rewritten together
    with the next port or source range change.
    """
    if not existing.allowed:
        return True
    if existing.allowed_ports("tcp") != desired.port_strings:
        return True
    return set(existing.source_ranges) != desired.source_ranges


class FirewallPool:
    """
    Manages the one firewall rule that admits L7 load-balancer traffic.

    Not safe for concurrent use against the same rule: callers must
    serialize sync() and shutdown().
    """

    def __init__(
        self,
        provider: FirewallProvider,
        namer: Namer,
        source_ranges: Iterable[str] = L7_SRC_RANGES,
        description: str = DEFAULT_DESCRIPTION,
        host_targets: Optional[HostTargets] = None,
    ):
        self.provider = provider
        self.namer = namer
        self.source_ranges: FrozenSet[str] = frozenset(source_ranges)
        self.description = description
        self._host_targets = host_targets or provider.get_node_tags

        if not self.source_ranges:
            raise ValueError("At least one source range is required")

    @property
    def rule_name(self) -> str:
        return self.namer.firewall_rule()

    async def desired_state(
        self, ports: Iterable[int], nodes: Iterable[str]
    ) -> DesiredState:
        """
        Compute the desired state for the given ports and nodes.

        Target tags are only resolved when there are ports to expose; an
        empty port set means the rule should not exist at all.
        """
        port_set = normalize_ports(ports)
        targets: FrozenSet[str] = frozenset()
        if port_set:
            targets = frozenset(await self._host_targets(set(nodes)))
        return DesiredState(
            name=self.rule_name,
            ports=port_set,
            targets=targets,
            source_ranges=self.source_ranges,
        )

    def build_firewall(self, desired: DesiredState) -> Firewall:
        """Render the firewall rule for a desired state."""
        return Firewall(
            name=desired.name,
            description=self.description,
            network=self.provider.network_url(),
            allowed=[
                Allowed(
                    ip_protocol="tcp",
                    ports=[str(p) for p in sorted(desired.ports)],
                )
            ],
            source_ranges=sorted(desired.source_ranges),
            target_tags=sorted(desired.targets),
        )

    async def create_firewall_object(
        self, ports: Iterable[int], nodes: Iterable[str]
    ) -> Firewall:
        """Build the rule sync() would write, without touching the provider."""
        return self.build_firewall(await self.desired_state(ports, nodes))

    async def sync(self, ports: Iterable[int], nodes: Iterable[str]) -> None:
        """
        Bring the firewall rule in line with ``ports`` and ``nodes``.

        Raises:
            FirewallSyncError: The mutation was forbidden (shared network).
            ProviderError: Any other provider failure, unchanged.
            ValueError: ``ports`` holds something that is not a TCP port.
        """
        desired = await self.desired_state(ports, nodes)
        logger.debug(
            f"Syncing firewall rule {desired.name}: "
            f"ports={sorted(desired.ports)}, targets={sorted(desired.targets)}"
        )

        try:
            existing = await self.provider.get_firewall(desired.name)
        except ProviderError as e:
            if not is_not_found(e):
                raise
            existing = None

        if existing is None:
            if not desired.ports:
                logger.debug(f"Firewall rule {desired.name} absent and not needed")
                return
            await self._create(self.build_firewall(desired))
            return

        if not desired.ports:
            await self._delete(desired.name)
            return

        if not needs_update(existing, desired):
            logger.debug(f"Firewall rule {desired.name} is up to date")
            return

        await self._update(self.build_firewall(desired))

    async def shutdown(self) -> None:
        """Delete the firewall rule if it exists."""
        await self._delete(self.rule_name)

    async def _create(self, firewall: Firewall) -> None:
        logger.info(
            f"Creating firewall rule {firewall.name} for ports "
            f"{firewall.allowed[0].ports}"
        )
        try:
            await self.provider.create_firewall(firewall)
        except ProviderError as e:
            if is_forbidden(e):
                raise self._forbidden(
                    SyncAction.CREATE,
                    firewall.name,
                    gcloud.create_command(
                        firewall, self.provider.network_project_id()
                    ),
                ) from e
            raise

    async def _update(self, firewall: Firewall) -> None:
        logger.info(
            f"Updating firewall rule {firewall.name} to ports "
            f"{firewall.allowed[0].ports}"
        )
        try:
            await self.provider.update_firewall(firewall)
        except ProviderError as e:
            if is_forbidden(e):
                raise self._forbidden(
                    SyncAction.UPDATE,
                    firewall.name,
                    gcloud.update_command(
                        firewall, self.provider.network_project_id()
                    ),
                ) from e
            raise

    async def _delete(self, name: str) -> None:
        try:
            await self.provider.delete_firewall(name)
        except ProviderError as e:
            if is_not_found(e):
                logger.debug(f"Firewall rule {name} already deleted")
                return
            if is_forbidden(e):
                raise self._forbidden(
                    SyncAction.DELETE,
                    name,
                    gcloud.delete_command(name, self.provider.network_project_id()),
                ) from e
            raise
        logger.info(f"Deleted firewall rule {name}")

    def _forbidden(
        self, action: SyncAction, name: str, command: str
    ) -> FirewallSyncError:
        project = self.provider.network_project_id()
        if self.provider.on_xpn():
            message = (
                f"Cannot {action.value} firewall rule {name}: the network is "
                f"shared from and administered by project {project}. The "
                f"network admin must {action.value} the rule out of band: "
                f"`{command}`"
            )
        else:
            message = (
                f"Cannot {action.value} firewall rule {name}: permission "
                f"denied in project {project}. Grant the controller firewall "
                f"access or {action.value} the rule out of band: `{command}`"
            )
        logger.warning(message)
        return FirewallSyncError(action, name, message, command=command)
