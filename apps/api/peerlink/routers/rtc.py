"""ICE server and signaling relay endpoints."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect

from ..schemas.rtc import IceServersResponse, RoomOccupancyResponse
from ..services import rtc as rtc_service
from ..services.rooms import RelayConnection
from ..services.signaling import RelayService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_relay(request: Request) -> RelayService:
    return request.app.state.relay


@router.get("/ice-servers", response_model=IceServersResponse, response_model_exclude_none=True)
async def ice_servers() -> IceServersResponse:
    """Return STUN/TURN servers; degrades to STUN-only instead of failing."""

    return await rtc_service.get_ice_servers()


@router.get("/rooms/{room_id}", response_model=RoomOccupancyResponse)
async def room_occupancy(room_id: str, request: Request) -> RoomOccupancyResponse:
    """Report who is currently in a room."""

    relay = get_relay(request)
    async with relay.table.lock:
        room = relay.table.get(room_id)
        participants = list(room.participants) if room else None
    if participants is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomOccupancyResponse(room_id=room_id, participants=participants)


async def serve_signaling(websocket: WebSocket) -> None:
    """Run the relay loop for one WebSocket until it closes."""

    relay: RelayService = websocket.app.state.relay
    await websocket.accept()

    ctx = relay.open(RelayConnection(connection_id=str(uuid4()), send=websocket.send_json))
    try:
        while True:
            raw = await websocket.receive_text()
            await relay.handle_message(ctx, raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Signaling connection %s failed", ctx.connection_id)
    finally:
        await relay.disconnect(ctx)


@router.websocket("/signaling")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Two-party room relay for SDP, ICE and in-call side messages."""

    await serve_signaling(websocket)
