"""JSON-RPC client for Ethereum-compatible nodes.

The base client sends one request per call and never retries, caches or
times out. Timeouts and retries are layered on as decorators:

    client = HttpRpcClient(url)
    client = RetryingRpcClient(client, retries=2)
    client = TimeoutRpcClient(client, seconds=10)
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from cleenswap.errors import DecodingError, RpcProtocolError, RpcTimeoutError, RpcTransportError

logger = logging.getLogger(__name__)

RETRYABLE_HTTP_CODES = {429, 502, 503, 504}
RETRY_BACKOFF_SECONDS = (0.15, 0.40, 1.0)


class RpcClient(ABC):
    """Minimal JSON-RPC client interface."""

    @abstractmethod
    async def call(self, method: str, params: list) -> Any:
        """Execute a single JSON-RPC method and return its ``result``.

        Raises:
            RpcTransportError: transport failure or non-JSON response
            RpcProtocolError: the node returned an error payload
        """
        pass

    async def aclose(self) -> None:
        """Release any underlying connections."""
        pass

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        result = await self.call("eth_call", [{"to": to, "data": data}, block])
        if not isinstance(result, str):
            raise DecodingError(f"eth_call returned {type(result).__name__}, expected hex")
        return result

    async def get_logs(
        self,
        address: str,
        topics: list,
        from_block: str = "0x0",
        to_block: str = "latest",
    ) -> list[dict]:
        result = await self.call(
            "eth_getLogs",
            [
                {
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "address": address,
                    "topics": topics,
                }
            ],
        )
        if not isinstance(result, list):
            raise DecodingError(f"eth_getLogs returned {type(result).__name__}, expected list")
        return result


class HttpRpcClient(RpcClient):
    """JSON-RPC 2.0 over HTTPS using httpx."""

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[dict] = None,
    ):
        """Initialize the client.

        Args:
            url: Provider endpoint
            client: Shared httpx client (created and owned here if omitted)
            headers: Extra request headers (e.g. provider API keys)
        """
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(None))
        self._headers = headers or {}
        self._ids = itertools.count(1)

    async def call(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        logger.debug(f"RPC {method} -> {self.url}")

        try:
            response = await self._client.post(self.url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise RpcTransportError(f"{method} request failed: {e}", method=method) from e

        if not response.is_success:
            raise RpcTransportError(
                f"{method} returned HTTP {response.status_code}: {response.text[:200]}",
                method=method,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RpcTransportError(
                f"{method} returned a non-JSON body: {response.text[:200]}",
                method=method,
                status_code=response.status_code,
            ) from e

        if not isinstance(body, dict):
            raise RpcProtocolError(f"{method} returned a non-object response", method=method)

        if "error" in body and body["error"] is not None:
            error = body["error"]
            if isinstance(error, dict):
                raise RpcProtocolError(
                    str(error.get("message", error)),
                    method=method,
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcProtocolError(str(error), method=method)

        if "result" not in body:
            raise RpcProtocolError(f"{method} response has no result", method=method)

        return body["result"]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class TimeoutRpcClient(RpcClient):
    """Bounds each call with a deadline.

    Expiry only abandons the wait; the node may still execute the request.
    """

    def __init__(self, inner: RpcClient, seconds: float):
        self.inner = inner
        self.seconds = seconds

    async def call(self, method: str, params: list) -> Any:
        try:
            return await asyncio.wait_for(self.inner.call(method, params), timeout=self.seconds)
        except asyncio.TimeoutError as e:
            logger.warning(
                f"RPC {method} timed out after {self.seconds}s "
                "(request may still complete server-side)"
            )
            raise RpcTimeoutError(
                f"{method} timed out after {self.seconds}s", method=method
            ) from e

    async def aclose(self) -> None:
        await self.inner.aclose()


class RetryingRpcClient(RpcClient):
    """Retries transport failures a bounded number of times.

    Protocol errors are returned by the node itself and are never retried.
    """

    def __init__(
        self,
        inner: RpcClient,
        retries: int = 2,
        backoff: tuple[float, ...] = RETRY_BACKOFF_SECONDS,
    ):
        self.inner = inner
        self.retries = retries
        self.backoff = backoff

    def _delay(self, attempt: int) -> float:
        if not self.backoff:
            return 0.0
        return self.backoff[min(attempt, len(self.backoff) - 1)]

    async def call(self, method: str, params: list) -> Any:
        attempt = 0
        while True:
            try:
                return await self.inner.call(method, params)
            except RpcTransportError as e:
                retryable = e.status_code is None or e.status_code in RETRYABLE_HTTP_CODES
                if not retryable or attempt >= self.retries:
                    raise
                delay = self._delay(attempt)
                logger.info(
                    f"Retrying {method} after transport error "
                    f"(attempt {attempt + 1}/{self.retries}): {e}"
                )
                attempt += 1
                await asyncio.sleep(delay)

    async def aclose(self) -> None:
        await self.inner.aclose()


def build_rpc_client(settings, client: Optional[httpx.AsyncClient] = None) -> RpcClient:
    """Create the RPC client described by settings.

    Args:
        settings: Application settings
        client: Optional shared httpx client

    Returns:
        HttpRpcClient, wrapped in retry and timeout decorators when configured
    """
    url = settings.provider_url
    if not url:
        logger.warning("No RPC endpoint configured - set RPC_URL or INFURA_PROJECT_ID")

    rpc: RpcClient = HttpRpcClient(url, client=client)
    if settings.rpc_max_retries > 0:
        rpc = RetryingRpcClient(rpc, retries=settings.rpc_max_retries)
    if settings.rpc_timeout_seconds:
        rpc = TimeoutRpcClient(rpc, seconds=settings.rpc_timeout_seconds)
    return rpc
