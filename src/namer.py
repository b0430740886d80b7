"""Deterministic names for cloud resources owned by the cluster."""

from dataclasses import dataclass

FIREWALL_RULE_PREFIX = "k8s-fw-l7"
CLUSTER_NAME_DELIMITER = "--"
MAX_NAME_LENGTH = 63


def truncate(name: str) -> str:
    return name[:MAX_NAME_LENGTH]


@dataclass(frozen=True)
class Namer:
    """
    Names resources from the cluster's identity.

    ``firewall_name`` falls back to ``cluster_name`` so clusters that never
    set one keep a stable rule name.
    """

    cluster_name: str
    firewall_name: str = ""

    def __post_init__(self):
        if not self.cluster_name and not self.firewall_name:
            raise ValueError("Namer requires a cluster name or a firewall name")

    def firewall_rule(self) -> str:
        """Name of the L7 load-balancer firewall rule."""
        fw_name = self.firewall_name or self.cluster_name
        return truncate(f"{FIREWALL_RULE_PREFIX}{CLUSTER_NAME_DELIMITER}{fw_name}")
