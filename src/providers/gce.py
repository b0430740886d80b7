"""
GCE Firewall Provider - Implements FirewallProvider for Google Compute Engine.

Talks to the Compute Engine REST API, waits for the global operations that
firewall mutations return, and classifies HTTP and operation failures into
the provider error taxonomy.
"""

import asyncio
import logging
import os
import re
import time
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import aiohttp

from providers.base import ErrorKind, Firewall, FirewallProvider, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://compute.googleapis.com/compute/v1"
METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/"
    "instance/service-accounts/default/token"
)

_NOT_FOUND_CODES = {"RESOURCE_NOT_FOUND", "NOT_FOUND"}
_FORBIDDEN_CODES = {"FORBIDDEN", "PERMISSION_DENIED", "ACCESS_DENIED"}


def classify_status(status: int) -> ErrorKind:
    """Map an HTTP status code onto an ErrorKind."""
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 403:
        return ErrorKind.FORBIDDEN
    return ErrorKind.BACKEND


def classify_operation_error(code: str) -> ErrorKind:
    """Map a Compute operation error code onto an ErrorKind."""
    if code in _NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND
    if code in _FORBIDDEN_CODES:
        return ErrorKind.FORBIDDEN
    return ErrorKind.BACKEND


def _error_message(body: Any, status: int) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    if isinstance(body, str) and body:
        return body
    return f"HTTP {status}"


class GCEFirewallProvider(FirewallProvider):
    """
    Firewall provider backed by the Compute Engine API.

    Firewall rules belong to the project that owns the network. When the
    network is shared from a host project (XPN) the caller usually has
    read access only, and mutations come back as 403.
    """

    def __init__(self):
        self.project: str = ""
        self.network_project: str = ""
        self.network: str = "default"
        self.api_base_url: str = DEFAULT_API_URL
        self.access_token: Optional[str] = None
        self.node_tags: List[str] = []
        self.request_timeout: int = 30
        self.operation_timeout: int = 300
        self.poll_interval: float = 2.0
        self._token_expiry: float = 0.0

    @property
    def name(self) -> str:
        return "gce"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load GCE provider configuration from environment variables."""
        node_tags = os.getenv("GCE_NODE_TAGS", "")
        return {
            "project": os.getenv("GCE_PROJECT", ""),
            "network_project": os.getenv("GCE_NETWORK_PROJECT", ""),
            "network": os.getenv("GCE_NETWORK", "default"),
            "api_base_url": os.getenv("GCE_API_URL", DEFAULT_API_URL),
            "access_token": os.getenv("GCE_ACCESS_TOKEN", ""),
            "node_tags": [t.strip() for t in node_tags.split(",") if t.strip()],
            "request_timeout": int(os.getenv("GCE_REQUEST_TIMEOUT", "30")),
            "operation_timeout": int(os.getenv("GCE_OPERATION_TIMEOUT", "300")),
            "poll_interval": float(os.getenv("GCE_OPERATION_POLL_INTERVAL", "2")),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the provider with configuration."""
        self.project = config.get("project", self.project)
        self.network_project = config.get("network_project") or self.project
        self.network = config.get("network", self.network)
        self.api_base_url = config.get("api_base_url", self.api_base_url).rstrip("/")
        self.access_token = config.get("access_token") or None
        self.node_tags = list(config.get("node_tags", self.node_tags))
        self.request_timeout = config.get("request_timeout", self.request_timeout)
        self.operation_timeout = config.get(
            "operation_timeout", self.operation_timeout
        )
        self.poll_interval = config.get("poll_interval", self.poll_interval)

        if not self.project:
            raise ValueError(
                "GCE project must be configured. Set GCE_PROJECT environment variable."
            )

        logger.debug(
            f"GCE provider initialized: project={self.project}, "
            f"network={self.network_project}/{self.network}, "
            f"request_timeout={self.request_timeout}s"
        )

    def network_url(self) -> str:
        return (
            f"{self.api_base_url}/projects/{self.network_project}"
            f"/global/networks/{self.network}"
        )

    def network_project_id(self) -> str:
        return self.network_project

    def on_xpn(self) -> bool:
        return self.network_project != self.project

    async def get_firewall(self, name: str) -> Firewall:
        body = await self._call("GET", self._firewall_url(name))
        return Firewall.model_validate(body)

    async def create_firewall(self, firewall: Firewall) -> None:
        url = f"{self._project_url()}/global/firewalls"
        op = await self._call("POST", url, json=firewall.to_api())
        await self._wait_for_operation(op)
        logger.info(f"Created firewall rule {firewall.name}")

    async def update_firewall(self, firewall: Firewall) -> None:
        op = await self._call(
            "PUT", self._firewall_url(firewall.name), json=firewall.to_api()
        )
        await self._wait_for_operation(op)
        logger.info(f"Updated firewall rule {firewall.name}")

    async def delete_firewall(self, name: str) -> None:
        op = await self._call("DELETE", self._firewall_url(name))
        await self._wait_for_operation(op)
        logger.info(f"Deleted firewall rule {name}")

    async def get_node_tags(self, node_names: Iterable[str]) -> Set[str]:
        """
        Resolve the target tags for a set of nodes.

        Configured node tags win. Otherwise each instance contributes its
        first network tag, so nodes in the same instance group collapse onto
        one tag.
        """
        if self.node_tags:
            return set(self.node_tags)

        names = sorted(set(node_names))
        if not names:
            return set()

        pattern = "|".join(re.escape(n) for n in names)
        url = f"{self.api_base_url}/projects/{self.project}/aggregated/instances"
        params: Dict[str, str] = {"filter": f"name eq ({pattern})"}
        tags: Set[str] = set()

        while True:
            body = await self._call("GET", url, params=params)
            for scoped in (body.get("items") or {}).values():
                for instance in scoped.get("instances", []) or []:
                    items = (instance.get("tags") or {}).get("items") or []
                    if items:
                        tags.add(items[0])
            page_token = body.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        if not tags:
            raise ProviderError(
                ErrorKind.NOT_FOUND,
                f"No network tags found for instances: {', '.join(names)}",
            )
        return tags

    # Private helper methods

    def _project_url(self) -> str:
        return f"{self.api_base_url}/projects/{self.network_project}"

    def _firewall_url(self, name: str) -> str:
        return f"{self._project_url()}/global/firewalls/{name}"

    async def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Compute API requests."""
        token = await self._get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _get_token(self) -> str:
        """Return the configured token or one from the metadata server."""
        if self.access_token and (
            not self._token_expiry or time.monotonic() < self._token_expiry
        ):
            return self.access_token

        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(
                    METADATA_TOKEN_URL, headers={"Metadata-Flavor": "Google"}
                ) as response:
                    if response.status != 200:
                        raise ProviderError(
                            ErrorKind.BACKEND,
                            f"Failed to fetch access token: HTTP {response.status}",
                            status_code=response.status,
                        )
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(
                ErrorKind.BACKEND, f"Failed to fetch access token: {e}"
            ) from e

        self.access_token = data["access_token"]
        # Refresh a minute before the token actually expires
        self._token_expiry = time.monotonic() + int(data.get("expires_in", 0)) - 60
        return self.access_token

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Any]:
        """Perform one HTTP request and return (status, decoded body)."""
        headers = await self._get_headers()
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=headers, json=json, params=params
                ) as response:
                    if response.content_type == "application/json":
                        body = await response.json()
                    else:
                        body = await response.text()
                    return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {url} failed: {e!r}")
            raise ProviderError(
                ErrorKind.BACKEND, f"{method} {url} failed: {e!r}"
            ) from e

    async def _call(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Perform a request and raise a classified ProviderError on failure."""
        status, body = await self._request(method, url, json=json, params=params)
        if status >= 400:
            kind = classify_status(status)
            message = _error_message(body, status)
            if kind is not ErrorKind.NOT_FOUND:
                logger.warning(f"{method} {url} returned {status}: {message}")
            raise ProviderError(kind, message, status_code=status)
        return body if isinstance(body, dict) else {}

    async def _wait_for_operation(self, op: Dict[str, Any]) -> None:
        """Poll a global operation until it is DONE."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.operation_timeout

        while op.get("status") != "DONE":
            if loop.time() > deadline:
                raise ProviderError(
                    ErrorKind.BACKEND,
                    f"Operation {op.get('name')} timed out after "
                    f"{self.operation_timeout}s",
                )
            await asyncio.sleep(self.poll_interval)
            op = await self._call(
                "GET", f"{self._project_url()}/global/operations/{op['name']}"
            )

        errors = (op.get("error") or {}).get("errors") or []
        if errors:
            first = errors[0]
            kind = classify_operation_error(first.get("code", ""))
            message = first.get("message") or first.get("code", "operation failed")
            raise ProviderError(
                kind, message, status_code=op.get("httpErrorStatusCode")
            )
