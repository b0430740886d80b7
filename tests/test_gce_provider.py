"""Unit tests for the GCE firewall provider."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from providers.base import Allowed, ErrorKind, Firewall, ProviderError
from providers.gce import (
    DEFAULT_API_URL,
    GCEFirewallProvider,
    classify_operation_error,
    classify_status,
)

API = "https://compute.example.com/compute/v1"
FW_URL = f"{API}/projects/host-project/global/firewalls"


def _firewall():
    return Firewall(
        name="k8s-fw-l7--uid",
        description="L7 load balancer firewall rule",
        network=f"{API}/projects/host-project/global/networks/shared",
        allowed=[Allowed(ip_protocol="tcp", ports=["80", "443"])],
        source_ranges=["130.211.0.0/22", "35.191.0.0/16"],
        target_tags=["k8s-node"],
    )


def _session_returning(mock_resp):
    """Patchable ClientSession whose request() yields ``mock_resp``."""
    mock_session = AsyncMock()
    mock_session.request = MagicMock(
        return_value=AsyncMock(
            __aenter__=AsyncMock(return_value=mock_resp),
            __aexit__=AsyncMock(return_value=False),
        )
    )
    return mock_session, AsyncMock(
        __aenter__=AsyncMock(return_value=mock_session),
        __aexit__=AsyncMock(return_value=False),
    )


@pytest.fixture
async def provider():
    p = GCEFirewallProvider()
    await p.initialize(
        {
            "project": "service-project",
            "network_project": "host-project",
            "network": "shared",
            "api_base_url": API + "/",
            "access_token": "token-123",
            "poll_interval": 0,
        }
    )
    return p


# ==================== Classification tests ====================


class TestClassification:
    """Tests for HTTP status and operation error classification."""

    def test_status_404(self):
        assert classify_status(404) is ErrorKind.NOT_FOUND

    def test_status_403(self):
        assert classify_status(403) is ErrorKind.FORBIDDEN

    @pytest.mark.parametrize("status", [400, 409, 429, 500, 503])
    def test_other_statuses_are_backend(self, status):
        assert classify_status(status) is ErrorKind.BACKEND

    def test_operation_codes(self):
        assert classify_operation_error("RESOURCE_NOT_FOUND") is ErrorKind.NOT_FOUND
        assert classify_operation_error("FORBIDDEN") is ErrorKind.FORBIDDEN
        assert classify_operation_error("PERMISSION_DENIED") is ErrorKind.FORBIDDEN
        assert classify_operation_error("QUOTA_EXCEEDED") is ErrorKind.BACKEND


# ==================== Configuration tests ====================


@pytest.mark.asyncio
class TestInitialize:
    """Tests for provider initialization and network identity."""

    async def test_requires_project(self):
        p = GCEFirewallProvider()
        with pytest.raises(ValueError, match="GCE_PROJECT"):
            await p.initialize({})

    async def test_network_project_defaults_to_project(self):
        p = GCEFirewallProvider()
        await p.initialize({"project": "my-project"})
        assert p.network_project_id() == "my-project"
        assert p.on_xpn() is False
        assert p.network_url() == (
            f"{DEFAULT_API_URL}/projects/my-project/global/networks/default"
        )

    async def test_xpn(self, provider):
        assert provider.on_xpn() is True
        assert provider.network_project_id() == "host-project"
        assert provider.network_url() == (
            f"{API}/projects/host-project/global/networks/shared"
        )


class TestLoadConfigFromEnv:
    def test_load_config_from_env(self):
        env = {
            "GCE_PROJECT": "p1",
            "GCE_NETWORK_PROJECT": "host",
            "GCE_NETWORK": "vpc",
            "GCE_NODE_TAGS": "tag-a, tag-b,",
            "GCE_REQUEST_TIMEOUT": "5",
        }
        with patch.dict("os.environ", env, clear=True):
            cfg = GCEFirewallProvider.load_config_from_env()
        assert cfg["project"] == "p1"
        assert cfg["network_project"] == "host"
        assert cfg["network"] == "vpc"
        assert cfg["node_tags"] == ["tag-a", "tag-b"]
        assert cfg["request_timeout"] == 5
        assert cfg["operation_timeout"] == 300


# ==================== Firewall operation tests ====================


@pytest.mark.asyncio
class TestFirewallOperations:
    """Tests for get/create/update/delete against a mocked transport."""

    async def test_get_firewall(self, provider):
        body = _firewall().to_api()
        provider._request = AsyncMock(return_value=(200, body))

        firewall = await provider.get_firewall("k8s-fw-l7--uid")

        provider._request.assert_awaited_once_with(
            "GET", f"{FW_URL}/k8s-fw-l7--uid", json=None, params=None
        )
        assert firewall.allowed[0].ports == ["80", "443"]
        assert firewall.target_tags == ["k8s-node"]

    async def test_get_firewall_not_found(self, provider):
        provider._request = AsyncMock(
            return_value=(404, {"error": {"code": 404, "message": "was not found"}})
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.get_firewall("missing")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "was not found"

    async def test_create_waits_for_operation(self, provider):
        provider._request = AsyncMock(
            side_effect=[
                (200, {"name": "op-1", "status": "RUNNING"}),
                (200, {"name": "op-1", "status": "RUNNING"}),
                (200, {"name": "op-1", "status": "DONE"}),
            ]
        )

        await provider.create_firewall(_firewall())

        calls = provider._request.await_args_list
        assert calls[0].args == ("POST", FW_URL)
        assert calls[0].kwargs["json"]["sourceRanges"] == [
            "130.211.0.0/22",
            "35.191.0.0/16",
        ]
        assert calls[0].kwargs["json"]["allowed"] == [
            {"IPProtocol": "tcp", "ports": ["80", "443"]}
        ]
        assert calls[2].args == (
            "GET",
            f"{API}/projects/host-project/global/operations/op-1",
        )

    async def test_create_forbidden(self, provider):
        provider._request = AsyncMock(
            return_value=(
                403,
                {"error": {"code": 403, "message": "Missing compute.firewalls.create"}},
            )
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.create_firewall(_firewall())
        assert exc_info.value.kind is ErrorKind.FORBIDDEN

    async def test_update_uses_put(self, provider):
        provider._request = AsyncMock(
            return_value=(200, {"name": "op", "status": "DONE"})
        )

        await provider.update_firewall(_firewall())

        method, url = provider._request.await_args.args
        assert method == "PUT"
        assert url == f"{FW_URL}/k8s-fw-l7--uid"

    async def test_delete_not_found(self, provider):
        provider._request = AsyncMock(return_value=(404, "Not Found"))

        with pytest.raises(ProviderError) as exc_info:
            await provider.delete_firewall("k8s-fw-l7--uid")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.message == "Not Found"

    async def test_operation_error_is_classified(self, provider):
        provider._request = AsyncMock(
            return_value=(
                200,
                {
                    "name": "op",
                    "status": "DONE",
                    "httpErrorStatusCode": 403,
                    "error": {
                        "errors": [
                            {"code": "FORBIDDEN", "message": "not allowed on host"}
                        ]
                    },
                },
            )
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.delete_firewall("k8s-fw-l7--uid")
        assert exc_info.value.kind is ErrorKind.FORBIDDEN
        assert exc_info.value.message == "not allowed on host"
        assert exc_info.value.status_code == 403

    async def test_operation_timeout(self, provider):
        provider.operation_timeout = -1
        provider._request = AsyncMock(
            return_value=(200, {"name": "op", "status": "RUNNING"})
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.delete_firewall("k8s-fw-l7--uid")
        assert exc_info.value.kind is ErrorKind.BACKEND
        assert "timed out" in exc_info.value.message

    async def test_server_error_is_backend(self, provider):
        provider._request = AsyncMock(return_value=(503, "unavailable"))

        with pytest.raises(ProviderError) as exc_info:
            await provider.get_firewall("k8s-fw-l7--uid")
        assert exc_info.value.kind is ErrorKind.BACKEND


# ==================== Node tag tests ====================


@pytest.mark.asyncio
class TestNodeTags:
    """Tests for node name to target tag resolution."""

    async def test_configured_tags_win(self, provider):
        provider.node_tags = ["k8s-node"]
        provider._request = AsyncMock()

        assert await provider.get_node_tags(["a", "b"]) == {"k8s-node"}
        provider._request.assert_not_called()

    async def test_empty_nodes(self, provider):
        assert await provider.get_node_tags([]) == set()

    async def test_first_tag_per_instance_across_pages(self, provider):
        page1 = {
            "items": {
                "zones/us-central1-a": {
                    "instances": [
                        {"name": "a", "tags": {"items": ["ig-1", "other"]}},
                        {"name": "b", "tags": {"items": ["ig-1"]}},
                    ]
                },
                "zones/us-central1-b": {"warning": {"code": "NO_RESULTS_ON_PAGE"}},
            },
            "nextPageToken": "next",
        }
        page2 = {
            "items": {
                "zones/us-central1-c": {
                    "instances": [{"name": "c", "tags": {"items": ["ig-2"]}}]
                }
            }
        }
        provider._request = AsyncMock(side_effect=[(200, page1), (200, page2)])

        tags = await provider.get_node_tags(["a", "b", "c"])

        assert tags == {"ig-1", "ig-2"}
        first, second = provider._request.await_args_list
        assert first.args[1] == f"{API}/projects/service-project/aggregated/instances"
        assert first.kwargs["params"]["filter"] == "name eq (a|b|c)"
        assert second.kwargs["params"]["pageToken"] == "next"

    async def test_no_tags_found(self, provider):
        provider._request = AsyncMock(return_value=(200, {"items": {}}))

        with pytest.raises(ProviderError) as exc_info:
            await provider.get_node_tags(["a"])
        assert exc_info.value.kind is ErrorKind.NOT_FOUND


# ==================== Transport tests ====================


@pytest.mark.asyncio
class TestTransport:
    """Tests for the aiohttp request helper and token handling."""

    async def test_request_decodes_json(self, provider):
        mock_resp = AsyncMock()
        mock_resp.status = 200
        mock_resp.content_type = "application/json"
        mock_resp.json = AsyncMock(return_value={"name": "fw"})
        mock_session, session_cm = _session_returning(mock_resp)

        with patch("providers.gce.aiohttp.ClientSession") as mock_session_cls:
            mock_session_cls.return_value = session_cm
            status, body = await provider._request("GET", f"{FW_URL}/fw")

        assert status == 200
        assert body == {"name": "fw"}
        kwargs = mock_session.request.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"

    async def test_request_text_body(self, provider):
        mock_resp = AsyncMock()
        mock_resp.status = 502
        mock_resp.content_type = "text/html"
        mock_resp.text = AsyncMock(return_value="Bad Gateway")
        _, session_cm = _session_returning(mock_resp)

        with patch("providers.gce.aiohttp.ClientSession") as mock_session_cls:
            mock_session_cls.return_value = session_cm
            status, body = await provider._request("GET", f"{FW_URL}/fw")

        assert status == 502
        assert body == "Bad Gateway"

    async def test_transport_error_is_backend(self, provider):
        mock_session = AsyncMock()
        mock_session.request = MagicMock(
            side_effect=aiohttp.ClientConnectionError("connection reset")
        )

        with patch("providers.gce.aiohttp.ClientSession") as mock_session_cls:
            mock_session_cls.return_value = AsyncMock(
                __aenter__=AsyncMock(return_value=mock_session),
                __aexit__=AsyncMock(return_value=False),
            )
            with pytest.raises(ProviderError) as exc_info:
                await provider._request("GET", f"{FW_URL}/fw")

        assert exc_info.value.kind is ErrorKind.BACKEND
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientError)

    async def test_token_from_metadata_server(self):
        p = GCEFirewallProvider()
        await p.initialize({"project": "p"})

        mock_resp = AsyncMock()
        mock_resp.status = 200
        mock_resp.json = AsyncMock(
            return_value={"access_token": "meta-token", "expires_in": 3600}
        )
        mock_session = AsyncMock()
        mock_session.get = MagicMock(
            return_value=AsyncMock(
                __aenter__=AsyncMock(return_value=mock_resp),
                __aexit__=AsyncMock(return_value=False),
            )
        )

        with patch("providers.gce.aiohttp.ClientSession") as mock_session_cls:
            mock_session_cls.return_value = AsyncMock(
                __aenter__=AsyncMock(return_value=mock_session),
                __aexit__=AsyncMock(return_value=False),
            )
            assert await p._get_token() == "meta-token"
            # Cached until close to expiry
            assert await p._get_token() == "meta-token"

        assert mock_session.get.call_count == 1
        headers = mock_session.get.call_args.kwargs["headers"]
        assert headers == {"Metadata-Flavor": "Google"}
