"""Pytest configuration and fixtures."""

import pytest

from config import reset_config
from firewalls import L7_SRC_RANGES, FirewallPool
from namer import Namer
from providers.fake import FakeFirewallProvider
from providers.registry import reset_registry


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop the cached config and provider registry between tests."""
    reset_config()
    reset_registry()
    yield
    reset_config()
    reset_registry()


@pytest.fixture
def namer():
    return Namer("ABC", "XYZ")


@pytest.fixture
def fake_provider():
    return FakeFirewallProvider(on_xpn=False, read_only=False)


@pytest.fixture
def pool(fake_provider, namer):
    return FirewallPool(fake_provider, namer)


def verify_firewall_rule(provider, rule_name, expected_ports, expected_cidrs=None):
    """Assert the stored rule exposes exactly the expected ports and CIDRs."""
    expected_cidrs = L7_SRC_RANGES if expected_cidrs is None else expected_cidrs
    firewall = provider.get_stored(rule_name)
    assert firewall is not None, f"firewall rule {rule_name} does not exist"
    assert set(firewall.allowed[0].ports) == {str(p) for p in expected_ports}
    assert set(firewall.source_ranges) == set(expected_cidrs)
    return firewall
