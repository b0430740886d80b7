#!/usr/bin/env python3
"""
CLI tool for the L7 firewall controller.

Runs single reconciliation passes against the managed firewall rule.
"""

import asyncio
import copy
import json
import logging
from typing import Any, Dict, List, Optional

import click
import yaml
from tabulate import tabulate

from config import Config, get_config
from firewalls import FirewallPool, FirewallSyncError, normalize_ports
from namer import Namer
from providers.base import Firewall, ProviderError, is_not_found
from providers.registry import get_registry, register_builtin_providers
from validation import validate_desired_state

logger = logging.getLogger(__name__)


class FirewallControllerCLI:
    """Builds the provider and pool from configuration."""

    def __init__(self, cfg: Config):
        self.config = cfg

    async def get_pool(self) -> FirewallPool:
        registry = get_registry()
        if not registry.list_providers():
            register_builtin_providers()

        provider_name = self.config.firewall.provider
        provider_config = registry.get_provider_config(provider_name)
        provider_config.update(
            self.config.providers.get_provider_config(provider_name)
        )
        provider = await registry.get_provider(provider_name, provider_config)

        namer = Namer(
            cluster_name=self.config.namer.cluster_name,
            firewall_name=self.config.namer.firewall_name,
        )
        return FirewallPool(
            provider,
            namer,
            source_ranges=self.config.firewall.source_ranges,
            description=self.config.firewall.description,
        )


def load_desired_state(filename: str) -> Dict[str, Any]:
    """Read a YAML/JSON desired-state document and validate it."""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    data = data or {}
    is_valid, error = validate_desired_state(data)
    if not is_valid:
        raise click.BadParameter(error, param_hint="--filename")
    return data


def _run(coro) -> Any:
    """Run a coroutine, turning firewall errors into exit codes."""
    try:
        return asyncio.run(coro)
    except FirewallSyncError as e:
        click.echo(e.message, err=True)
        raise SystemExit(1)
    except ProviderError as e:
        click.echo(f"Error: {e.message}", err=True)
        raise SystemExit(2)
    except ValueError as e:
        raise click.UsageError(str(e))


def _firewall_rows(firewall: Firewall) -> List[List[str]]:
    allow = [
        f"{a.ip_protocol}:{','.join(a.ports)}" if a.ports else a.ip_protocol
        for a in firewall.allowed
    ]
    return [
        ["Name", firewall.name],
        ["Description", firewall.description],
        ["Network", firewall.network],
        ["Allowed", " ".join(allow)],
        ["Source Ranges", ",".join(firewall.source_ranges)],
        ["Target Tags", ",".join(firewall.target_tags)],
    ]


@click.group()
@click.option("--provider", default=None, help="Firewall provider (default: gce)")
@click.option("--cluster-name", default=None, help="Cluster name for the rule name")
@click.option("--firewall-name", default=None, help="Override the rule name suffix")
@click.option("--log-level", default=None, help="Logging level (default: INFO)")
@click.pass_context
def cli(
    ctx,
    provider: Optional[str],
    cluster_name: Optional[str],
    firewall_name: Optional[str],
    log_level: Optional[str],
):
    """L7 firewall controller CLI - reconcile the load-balancer firewall rule"""
    try:
        cfg = copy.deepcopy(get_config())
    except ValueError as e:
        raise click.UsageError(str(e))

    if provider:
        cfg.firewall.provider = provider
    if cluster_name:
        cfg.namer.cluster_name = cluster_name
    if firewall_name:
        cfg.namer.firewall_name = firewall_name
    if log_level:
        cfg.logging.level = log_level.upper()

    if not cfg.namer.cluster_name and not cfg.namer.firewall_name:
        raise click.UsageError(
            "A cluster name is required. Set CLUSTER_NAME or pass --cluster-name."
        )

    logging.basicConfig(
        level=cfg.logging.level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.obj = FirewallControllerCLI(cfg)


@cli.command()
@click.option(
    "--filename",
    "-f",
    type=click.Path(exists=True),
    help="YAML/JSON file with 'ports' and 'nodes'",
)
@click.option("--port", "-p", "ports", type=int, multiple=True, help="Node port")
@click.option("--node", "-n", "nodes", multiple=True, help="Node name")
@click.pass_obj
def sync(client: FirewallControllerCLI, filename, ports, nodes):
    """Reconcile the firewall rule with the given ports and nodes"""
    all_ports = list(ports)
    all_nodes = list(nodes)
    if filename:
        data = load_desired_state(filename)
        all_ports.extend(data.get("ports", []))
        all_nodes.extend(data.get("nodes", []))

    try:
        normalize_ports(all_ports)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--port")

    async def run():
        pool = await client.get_pool()
        await pool.sync(all_ports, all_nodes)
        return pool.rule_name

    name = _run(run())
    click.echo(f"Firewall rule {name} is in sync")


@cli.command()
@click.pass_obj
def shutdown(client: FirewallControllerCLI):
    """Delete the managed firewall rule"""

    async def run():
        pool = await client.get_pool()
        await pool.shutdown()
        return pool.rule_name

    name = _run(run())
    click.echo(f"Firewall rule {name} deleted")


@cli.command()
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_obj
def get(client: FirewallControllerCLI, output):
    """Show the managed firewall rule"""

    async def run():
        pool = await client.get_pool()
        try:
            return pool.rule_name, await pool.provider.get_firewall(pool.rule_name)
        except ProviderError as e:
            if is_not_found(e):
                return pool.rule_name, None
            raise

    name, firewall = _run(run())
    if firewall is None:
        click.echo(f"Firewall rule {name} not found")
        return

    if output == "json":
        click.echo(json.dumps(firewall.to_api(), indent=2))
    elif output == "yaml":
        click.echo(yaml.dump(firewall.to_api(), default_flow_style=False))
    else:
        click.echo(tabulate(_firewall_rows(firewall), tablefmt="grid"))


if __name__ == "__main__":
    cli()
