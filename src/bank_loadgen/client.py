import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes
    latency: float
    error: str | None = None

    @property
    def transport_failed(self) -> bool:
        return self.status == 0


class HttpExecutor(Protocol):
    async def send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> HttpResponse: ...


class HttpxExecutor:
    """Sends requests through one shared ``httpx.AsyncClient``.

    Connection and timeout errors never raise; they come back as a response
    with status 0 and the error text, so callers record them like any other
    failed call.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> HttpResponse:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            return HttpResponse(status=0, body=b"", latency=time.perf_counter() - start, error=repr(e))
        return HttpResponse(status=response.status_code, body=response.content, latency=time.perf_counter() - start)

    async def aclose(self) -> None:
        await self._client.aclose()
