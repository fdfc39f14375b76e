"""ICE server provisioning.

Credentials for TURN come from Cloudflare's key API. Any failure degrades to
the public STUN list so callers can still attempt a direct connection.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.config import settings
from ..schemas.rtc import IceServer, IceServersResponse

logger = logging.getLogger(__name__)


def stun_only(limit: int | None = None) -> IceServersResponse:
    urls = settings.stun_servers[:limit] if limit else settings.stun_servers
    return IceServersResponse(ice_servers=[IceServer(urls=url) for url in urls])


def _normalise_ice_servers(raw: Any) -> list[IceServer]:
    if isinstance(raw, dict):
        return [IceServer(urls=raw["urls"], username=raw.get("username"), credential=raw.get("credential"))]
    if isinstance(raw, list):
        return [IceServer.model_validate(item) for item in raw]
    return []


async def _request_turn_credentials(client: httpx.AsyncClient) -> dict[str, Any]:
    url = f"{settings.turn_api_base_url.rstrip('/')}/{settings.turn_key_id}/credentials/generate"
    response = await client.post(
        url,
        headers={"Authorization": f"Bearer {settings.turn_api_token}"},
        json={"ttl": settings.turn_credential_ttl},
    )
    response.raise_for_status()
    return response.json()


async def get_ice_servers(client: httpx.AsyncClient | None = None) -> IceServersResponse:
    """Return TURN + STUN servers, or a STUN-only set when TURN is unavailable."""

    if not settings.turn_key_id or not settings.turn_api_token:
        logger.warning("TURN credentials not configured, using STUN only")
        return stun_only(limit=2)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.ice_request_timeout) as owned:
                payload = await _request_turn_credentials(owned)
        else:
            payload = await _request_turn_credentials(client)
        servers = _normalise_ice_servers(payload.get("ice_servers"))
    except Exception as exc:  # noqa: BLE001 - always hand back a usable config
        logger.error("Error generating TURN credentials, falling back to STUN: %s", exc)
        return stun_only()

    servers.extend(IceServer(urls=url) for url in settings.stun_servers)
    return IceServersResponse(ice_servers=servers)
