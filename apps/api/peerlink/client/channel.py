"""WebSocket transport between a call client and the relay."""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import websockets
from websockets.asyncio.client import ClientConnection

from ..core.config import settings

logger = logging.getLogger(__name__)


class WebSocketSignalingChannel:
    """JSON envelopes over one relay WebSocket."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: dict) -> None:
        await self._ws.send(json.dumps(message))

    async def messages(self) -> AsyncIterator[dict]:
        """Yield decoded relay messages until the socket closes."""

        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    payload = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring non-JSON relay message")
                    continue
                if isinstance(payload, dict):
                    yield payload
        except websockets.ConnectionClosed:
            logger.info("Signaling channel closed by relay")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ws.close()


@asynccontextmanager
async def connect_signaling(url: str | None = None) -> AsyncIterator[WebSocketSignalingChannel]:
    """Open a signaling channel to the relay at ``url`` (defaults to ``settings.ws_url``)."""

    async with websockets.connect(url or settings.ws_url) as ws:
        channel = WebSocketSignalingChannel(ws)
        try:
            yield channel
        finally:
            await channel.close()
