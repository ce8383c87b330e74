"""
Network map client for the hostnames handshake.

This module provides the async HTTP client that asks a candidate server for
its cluster identifier and the hostnames of its peers, and parses only the
fields the verification engine relies on.
"""

import time
from typing import Any, Optional

import httpx

from .config import HOSTNAMES_PATH
from .enums import VerificationErrorCode
from .exceptions import VerificationFailed
from .models import HostnamesResponse


def parse_hostnames_body(url: str, body: Any) -> HostnamesResponse:
    """
    Parse a hostnames response body.

    The cluster identifier is ``publicKey`` when present, else ``swarmKey``.

    Args:
        url: Server the body came from (used in error details)
        body: Decoded JSON body

    Returns:
        HostnamesResponse with the defined fields only

    Raises:
        VerificationFailed: With code MISSING_IDENTIFIER or INVALID_HOSTNAMES
    """
    if not isinstance(body, dict):
        body = {}

    cluster_identifier = body.get("publicKey") or body.get("swarmKey")
    if not isinstance(cluster_identifier, str) or not cluster_identifier:
        raise VerificationFailed(
            code=VerificationErrorCode.MISSING_IDENTIFIER.value,
            message=f"Hostnames request to {url} did not return cluster identifier",
            details={"url": url},
        )

    hostnames = body.get("hostnames")
    if not isinstance(hostnames, list):
        raise VerificationFailed(
            code=VerificationErrorCode.INVALID_HOSTNAMES.value,
            message=f"Hostnames request to {url} did not return hostnames array",
            details={"url": url},
        )

    return HostnamesResponse(
        cluster_identifier=cluster_identifier,
        hostnames=[h for h in hostnames if isinstance(h, str) and h],
        ip_range_routes=bool(body.get("ipRangeRoutes", False)),
    )


class NetworkMapClient:
    """
    Async client for ``GET {server}/api/1.0/network-map/hostnames``.

    The underlying httpx client is created lazily; pass ``transport`` to route
    requests through a custom (e.g. mock) transport.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        hostnames_path: str = HOSTNAMES_PATH,
        verify_tls: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the network map client.

        Args:
            timeout: Request timeout in seconds
            hostnames_path: Path of the hostnames endpoint
            verify_tls: Verify TLS certificates
            transport: Optional httpx transport
        """
        self._timeout = timeout
        self._hostnames_path = hostnames_path
        self._verify_tls = verify_tls
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "NetworkMapClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=self._verify_tls,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def hostnames_url(self, url: str) -> str:
        return f"{url.rstrip('/')}{self._hostnames_path}"

    async def fetch_hostnames(self, url: str) -> HostnamesResponse:
        """
        Run the hostnames handshake against one server.

        Args:
            url: Normalized server URL

        Returns:
            Parsed HostnamesResponse

        Raises:
            VerificationFailed: On transport errors, timeouts, non-2xx
                responses, undecodable bodies, or missing fields
        """
        client = self._ensure_client()
        request_url = self.hostnames_url(url)
        start_time = time.perf_counter()

        try:
            response = await client.get(
                request_url,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException:
            raise VerificationFailed(
                code=VerificationErrorCode.TIMEOUT.value,
                message=f"Hostnames request to {url} timed out after {self._timeout}s",
                details={"url": url},
            )
        except httpx.HTTPError as e:
            raise VerificationFailed(
                code=VerificationErrorCode.NETWORK_ERROR.value,
                message=f"Unable to fetch hostnames from {url}: {e}",
                details={"url": url, "error_type": type(e).__name__},
            )

        if not response.is_success:
            raise VerificationFailed(
                code=VerificationErrorCode.HTTP_ERROR.value,
                message=f"Unable to fetch hostnames from {url}: HTTP {response.status_code}",
                details={
                    "url": url,
                    "http_status_code": response.status_code,
                    "response_time_ms": self._elapsed_ms(start_time),
                },
            )

        try:
            body = response.json()
        except ValueError as e:
            raise VerificationFailed(
                code=VerificationErrorCode.PARSE_ERROR.value,
                message=f"Hostnames response from {url} is not valid JSON: {e}",
                details={"url": url, "http_status_code": response.status_code},
            )

        return parse_hostnames_body(url, body)

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
