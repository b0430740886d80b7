"""Unit tests for gcloud.py - out-of-band command rendering."""

from gcloud import create_command, delete_command, update_command
from providers.base import Allowed, Firewall

NETWORK = "https://www.googleapis.com/compute/v1/projects/host/global/networks/shared"


def _firewall(**overrides):
    values = dict(
        name="k8s-fw-l7--XYZ",
        description="L7 load balancer firewall rule",
        network=NETWORK,
        allowed=[
            Allowed(ip_protocol="tcp", ports=["8080", "80", "30000-30010", "443"])
        ],
        source_ranges=["35.191.0.0/16", "130.211.0.0/22"],
        target_tags=["node-b", "node-a"],
    )
    values.update(overrides)
    return Firewall(**values)


class TestCreateCommand:
    def test_full_command(self):
        assert create_command(_firewall(), "host") == (
            "gcloud compute firewall-rules create k8s-fw-l7--XYZ --network shared "
            "--description 'L7 load balancer firewall rule' "
            "--allow tcp:80,tcp:443,tcp:8080,tcp:30000-30010 "
            "--source-ranges 130.211.0.0/22,35.191.0.0/16 "
            "--target-tags node-a,node-b "
            "--project host"
        )

    def test_protocol_without_ports(self):
        fw = _firewall(allowed=[Allowed(ip_protocol="icmp", ports=[])])
        assert "--allow icmp " in create_command(fw, "host")


class TestUpdateCommand:
    def test_has_no_network_flag(self):
        command = update_command(_firewall(), "host")
        assert command.startswith(
            "gcloud compute firewall-rules update k8s-fw-l7--XYZ --description"
        )
        assert "--network" not in command
        assert command.endswith("--project host")


class TestDeleteCommand:
    def test_delete(self):
        assert delete_command("k8s-fw-l7--XYZ", "host") == (
            "gcloud compute firewall-rules delete k8s-fw-l7--XYZ --project host"
        )
