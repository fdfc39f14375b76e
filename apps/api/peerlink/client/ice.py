"""Client-side ICE server lookup."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.config import DEFAULT_STUN_SERVERS, settings

logger = logging.getLogger(__name__)


def fallback_ice_config() -> dict[str, Any]:
    return {"iceServers": [{"urls": url} for url in DEFAULT_STUN_SERVERS]}


async def fetch_ice_servers(api_url: str | None = None, client: httpx.AsyncClient | None = None) -> dict[str, Any]:
    """Fetch ``{"iceServers": [...]}`` from the relay; STUN defaults on any failure."""

    url = f"{(api_url or settings.api_url).rstrip('/')}/api/rtc/ice-servers"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.ice_request_timeout) as owned:
                response = await owned.get(url)
        else:
            response = await client.get(url)
        response.raise_for_status()
        config = response.json()
        if not isinstance(config, dict) or not config.get("iceServers"):
            raise ValueError("response carried no iceServers")
        return config
    except Exception as exc:  # noqa: BLE001 - negotiation can still try with STUN only
        logger.warning("Failed to fetch ICE servers, using fallback: %s", exc)
        return fallback_ice_config()
