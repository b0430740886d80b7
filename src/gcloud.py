"""
gcloud command rendering.

When the controller may not touch a shared network's firewall, the network
admin has to run the change by hand. These helpers render the exact
``gcloud`` invocation for that change.
"""

import shlex
from typing import List

from providers.base import Firewall


def _port_key(entry: str):
    protocol, _, port = entry.partition(":")
    start = port.split("-", 1)[0]
    return (protocol, int(start) if start.isdigit() else 0, port)


def _name_from_link(link: str) -> str:
    return link.rstrip("/").rsplit("/", 1)[-1] if link else ""


def _firewall_args(firewall: Firewall, project_id: str) -> str:
    all_ports: List[str] = []
    for allowed in firewall.allowed:
        if allowed.ports:
            all_ports.extend(f"{allowed.ip_protocol}:{p}" for p in allowed.ports)
        else:
            all_ports.append(allowed.ip_protocol)
    all_ports.sort(key=_port_key)

    return (
        f"--description {shlex.quote(firewall.description)} "
        f"--allow {','.join(all_ports)} "
        f"--source-ranges {','.join(sorted(firewall.source_ranges))} "
        f"--target-tags {','.join(sorted(firewall.target_tags))} "
        f"--project {project_id}"
    )


def create_command(firewall: Firewall, project_id: str) -> str:
    network = _name_from_link(firewall.network)
    return (
        f"gcloud compute firewall-rules create {firewall.name} "
        f"--network {network} {_firewall_args(firewall, project_id)}"
    )


def update_command(firewall: Firewall, project_id: str) -> str:
    return (
        f"gcloud compute firewall-rules update {firewall.name} "
        f"{_firewall_args(firewall, project_id)}"
    )


def delete_command(name: str, project_id: str) -> str:
    return f"gcloud compute firewall-rules delete {name} --project {project_id}"
