from __future__ import annotations

import asyncio
import logging
from typing import Dict, Mapping, Optional, Protocol, Sequence

import aiohttp

from locations_offline.agent.errors import NetworkError
from locations_offline.agent.form_codec import build_form_data
from locations_offline.agent.models import AgentResponse, FormField, InterceptedRequest
from locations_offline.config.models import NetworkSettings

logger = logging.getLogger(__name__)

# Never forwarded in either direction; aiohttp recomputes framing and decodes bodies.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
        "content-encoding",
    }
)


def filter_headers(headers: Mapping[str, str], *, drop: Sequence[str] = ()) -> Dict[str, str]:
    dropped = HOP_BY_HOP_HEADERS | {name.lower() for name in drop}
    return {name: value for name, value in headers.items() if name.lower() not in dropped}


class Transport(Protocol):
    async def fetch(self, request: InterceptedRequest) -> AgentResponse:
        """Send the request upstream. Raises NetworkError when no response is obtained."""
        ...

    async def send_form(
        self,
        *,
        url: str,
        method: str,
        headers: Mapping[str, str],
        fields: Sequence[FormField],
    ) -> AgentResponse:
        """Send a freshly built multipart body. Raises NetworkError when no response is obtained."""
        ...

    async def probe(self, url: str) -> bool:
        """Return True when upstream answered at all."""
        ...


class AiohttpTransport:
    def __init__(self, config: NetworkSettings) -> None:
        self._config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> AiohttpTransport:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> None:
        if self._session is not None and not self._session.closed:
            return
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout, auto_decompress=True)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        return self._session

    async def _send(self, method: str, url: str, *, headers: Mapping[str, str], data) -> AgentResponse:
        session = await self._get_session()
        try:
            async with session.request(
                method,
                url,
                headers=dict(headers),
                data=data,
                allow_redirects=False,
            ) as response:
                body = await response.read()
                return AgentResponse(
                    status=response.status,
                    headers=filter_headers(response.headers),
                    body=body,
                    reason=response.reason or "",
                )
        except asyncio.TimeoutError as e:
            raise NetworkError(url, "timeout") from e
        except aiohttp.ClientError as e:
            raise NetworkError(url, str(e) or type(e).__name__) from e

    async def fetch(self, request: InterceptedRequest) -> AgentResponse:
        logger.debug("Upstream fetch. method=%s url=%s", request.method, request.url)
        return await self._send(
            request.method,
            request.url,
            headers=filter_headers(request.headers),
            data=request.body or None,
        )

    async def send_form(
        self,
        *,
        url: str,
        method: str,
        headers: Mapping[str, str],
        fields: Sequence[FormField],
    ) -> AgentResponse:
        # Content-Type is dropped so aiohttp writes a fresh multipart boundary.
        return await self._send(
            method,
            url,
            headers=filter_headers(headers, drop=("content-type",)),
            data=build_form_data(fields),
        )

    async def probe(self, url: str) -> bool:
        try:
            await self._send("GET", url, headers={}, data=None)
        except NetworkError as e:
            logger.debug("Connectivity probe failed. url=%s reason=%s", url, e.reason)
            return False
        return True
