"""FastAPI application hosting the two-party signaling relay."""
from __future__ import annotations

import base64
import logging

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response

from .core.config import settings
from .routers import rtc as rtc_router
from .schemas.rtc import IceServersResponse
from .services import rtc as rtc_service
from .services.rooms import RoomTable
from .services.signaling import MessageRouter, RelayService

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    application = FastAPI(title="Peerlink Signaling Relay", version="0.1.0")

    if settings.cors_allow_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    application.state.relay = RelayService(
        RoomTable(), MessageRouter(send_timeout=settings.relay_send_timeout)
    )
    application.include_router(rtc_router.router, prefix="/api/rtc", tags=["rtc"])
    return application


app = create_app()

FAVICON_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)


@app.head("/", tags=["meta"])
async def index_head() -> Response:
    """Fast health checks issue HEAD /; answer with 200 to avoid noisy 405s."""

    return Response(status_code=200)


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    return Response(status_code=200)


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> PlainTextResponse:
    return PlainTextResponse("User-agent: *\nDisallow:")


@app.get("/favicon.ico", include_in_schema=False)
async def favicon() -> Response:
    return Response(content=FAVICON_BYTES, media_type="image/png")


@app.get("/get-ice-servers", response_model=IceServersResponse, response_model_exclude_none=True, tags=["rtc"])
async def legacy_ice_servers() -> IceServersResponse:
    """Older clients fetch ICE servers from the root path."""

    return await rtc_service.get_ice_servers()


@app.websocket("/ws")
async def legacy_signaling(websocket: WebSocket) -> None:
    await rtc_router.serve_signaling(websocket)


def run() -> None:
    """Console entrypoint: serve the relay with uvicorn."""

    import uvicorn

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Signaling relay listening on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
