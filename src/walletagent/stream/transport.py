"""Transport layer: one streaming request per turn.

A ``Transport`` knows how to open a request and produce raw body chunks.
``TransportReader`` wraps one with a ``CancellationToken`` and checks it on
every pull, so a turn can be stopped even while a read is blocked.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable

import httpx

from walletagent.errors import TransportError

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation signal shared by a turn's components."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class StreamRequest:
    """Body of the outbound request that opens a turn's stream."""

    session_id: str
    prompt: str
    chain_id: int
    wallet_address: str | None = None
    controls: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "agentSessionId": self.session_id,
            "prompt": self.prompt,
            "walletAddress": self.wallet_address,
            "chainId": self.chain_id,
            "controls": self.controls,
        }


class Transport(ABC):
    """Source of raw stream bytes for one turn."""

    @abstractmethod
    async def open(self) -> None:
        """Send the request.

        Raises:
            TransportError: if the connection fails or the status is not 2xx.
        """

    @abstractmethod
    def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks until the remote closes the stream."""

    async def aclose(self) -> None:
        """Release the underlying connection. Safe to call more than once."""


class HttpTransport(Transport):
    """Streams a POST response body with httpx.

    Read timeouts are disabled: the turn's watchdog decides when a quiet
    stream is dead, not the HTTP client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        request: StreamRequest,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._request = request
        self._headers = {"Accept": "text/event-stream", **(headers or {})}
        self._response: httpx.Response | None = None

    async def open(self) -> None:
        http_request = self._client.build_request(
            "POST",
            self._url,
            json=self._request.to_payload(),
            headers=self._headers,
            timeout=httpx.Timeout(self._client.timeout.connect, read=None),
        )
        logger.info("Opening stream for session %s", self._request.session_id)
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            logger.error("Stream connection failed: %s", e)
            raise TransportError(f"Connection error: {e}") from e

        if not response.is_success:
            await response.aclose()
            logger.error("Stream request failed with status %d", response.status_code)
            raise TransportError(
                f"Stream request failed: {response.status_code}",
                status_code=response.status_code,
            )
        self._response = response

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        if self._response is None:
            raise RuntimeError("iter_bytes() called before open()")
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            # Mid-stream failures end the stream like a remote close.
            logger.warning("Stream read failed, treating as closed: %s", e)

    async def aclose(self) -> None:
        if self._response is not None:
            await self._response.aclose()
            self._response = None


_END = object()


async def _next_chunk(iterator: AsyncIterator[bytes]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class TransportReader:
    """Cancellation-aware pull loop over a ``Transport``.

    The reader is single use: once ``chunks`` ends, by remote close or by
    cancellation, it cannot be restarted.
    """

    def __init__(self, transport: Transport, token: CancellationToken) -> None:
        self._transport = transport
        self._token = token
        self._consumed = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    async def _race(self, awaitable: Awaitable[Any]) -> tuple[bool, Any]:
        """Await *awaitable* unless the token fires first.

        Returns ``(True, result)`` on completion or ``(False, None)`` if
        cancelled; in that case the pending work is cancelled and awaited.
        """
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                await asyncio.wait({work})
        if work.cancelled():
            return False, None
        return True, work.result()

    async def open(self) -> bool:
        """Open the transport. Returns False if cancelled while connecting."""
        if self._token.cancelled:
            return False
        opened, _ = await self._race(self._transport.open())
        return opened

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield raw chunks until remote close or cancellation."""
        if self._consumed:
            raise RuntimeError("TransportReader cannot be restarted")
        self._consumed = True
        iterator = self._transport.iter_bytes()
        try:
            while not self._token.cancelled:
                received, chunk = await self._race(_next_chunk(iterator))
                if not received:
                    logger.debug("Stream read cancelled (%s)", self._token.reason)
                    break
                if chunk is _END:
                    logger.debug("Stream closed by remote")
                    break
                yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def aclose(self) -> None:
        await self._transport.aclose()
