"""
Firewall Provider Base - Abstract interface for cloud firewall backends.

A provider exposes get/create/update/delete of a single named firewall
rule plus the node-to-target-tag mapping the reconciler needs to build a
rule. Every failure is raised as a ProviderError whose ``kind`` classifies
it as not-found, forbidden, or an opaque backend failure.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_NAME_LENGTH = 63


class ErrorKind(Enum):
    """Classification of provider failures."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    BACKEND = "backend"


class ProviderError(Exception):
    """Raised by a provider when a firewall operation fails."""

    def __init__(
        self, kind: ErrorKind, message: str, status_code: Optional[int] = None
    ):
        self.kind = kind
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def is_not_found(err: BaseException) -> bool:
    return getattr(err, "kind", None) is ErrorKind.NOT_FOUND


def is_forbidden(err: BaseException) -> bool:
    return getattr(err, "kind", None) is ErrorKind.FORBIDDEN


class Allowed(BaseModel):
    """One protocol/ports pair of a firewall rule."""

    model_config = ConfigDict(populate_by_name=True)

    ip_protocol: str = Field(default="tcp", alias="IPProtocol")
    ports: List[str] = Field(default_factory=list)


class Firewall(BaseModel):
    """A firewall rule as stored by the cloud provider."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    description: str = ""
    network: str = ""
    allowed: List[Allowed] = Field(default_factory=list)
    source_ranges: List[str] = Field(default_factory=list, alias="sourceRanges")
    target_tags: List[str] = Field(default_factory=list, alias="targetTags")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v:
            raise ValueError("Firewall name cannot be empty")
        if len(v) > MAX_NAME_LENGTH:
            raise ValueError(
                f"Firewall name must be at most {MAX_NAME_LENGTH} characters"
            )
        return v

    def allowed_ports(self, protocol: str = "tcp") -> Set[str]:
        """Port strings of the allowed entries for ``protocol``."""
        ports: Set[str] = set()
        for entry in self.allowed:
            if entry.ip_protocol.lower() == protocol:
                ports.update(entry.ports)
        return ports

    def to_api(self) -> Dict[str, Any]:
        """Serialize using the provider's field names."""
        return self.model_dump(by_alias=True)


class FirewallProvider(ABC):
    """
    Abstract base class for firewall providers.

    Implementations talk to one cloud network and manage firewall rules by
    name. Methods raise ProviderError; they never return error values.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (e.g., 'gce')."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Provider version string."""
        pass

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the provider with configuration.

        Args:
            config: Provider-specific configuration dictionary
        """
        pass

    @abstractmethod
    async def get_firewall(self, name: str) -> Firewall:
        """
        Fetch a firewall rule by name.

        Raises:
            ProviderError: NOT_FOUND if the rule does not exist.
        """
        pass

    @abstractmethod
    async def create_firewall(self, firewall: Firewall) -> None:
        """Create a firewall rule."""
        pass

    @abstractmethod
    async def update_firewall(self, firewall: Firewall) -> None:
        """Replace an existing firewall rule with ``firewall``."""
        pass

    @abstractmethod
    async def delete_firewall(self, name: str) -> None:
        """Delete a firewall rule by name."""
        pass

    @abstractmethod
    async def get_node_tags(self, node_names: Iterable[str]) -> Set[str]:
        """
        Map node names to the target tags that select them.

        Several nodes may share a tag.
        """
        pass

    @abstractmethod
    def network_url(self) -> str:
        """URL of the network firewall rules are attached to."""
        pass

    @abstractmethod
    def network_project_id(self) -> str:
        """Project that owns the network (and therefore its firewall rules)."""
        pass

    def on_xpn(self) -> bool:
        """Whether the network is shared from another project."""
        return False

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load provider-specific configuration from environment variables.

        Override this method in subclasses to define how the provider
        loads its configuration from the environment.
        """
        return {}
