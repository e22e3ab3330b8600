import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from callroom.catalog import catalog_payload
from callroom.config import Settings, configure_logging, validate_config
from callroom.duration import DEFAULT_DURATION_LIMIT_SECONDS
from callroom.remote_config import CallConfigClient
from callroom.room import Room

logger = logging.getLogger(__name__)


def _site_id(websocket: WebSocket) -> str:
    return websocket.headers.get("host", "")


def _origin(websocket: WebSocket, settings: Settings) -> str:
    if settings.public_origin:
        return settings.public_origin
    origin = websocket.headers.get("origin")
    if origin:
        return origin
    return f"{websocket.url.scheme.replace('ws', 'http')}://{_site_id(websocket)}"


def create_app(
    settings: Optional[Settings] = None,
    config_client: Optional[CallConfigClient] = None,
) -> FastAPI:
    """Build the call room app.

    Each ``/ws/room`` connection is one page load with its own ``Room``;
    nothing is shared between connections except the config client.
    """
    settings = settings or Settings.from_env()
    if config_client is None and settings.supabase_url:
        config_client = CallConfigClient(
            base_url=settings.supabase_url,
            api_key=settings.supabase_anon_key,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if config_client is not None:
            await config_client.close()

    app = FastAPI(title="Callroom", lifespan=lifespan)
    app.state.settings = settings
    app.state.config_client = config_client

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.get("/api/packages")
    async def packages():
        return {"packages": catalog_payload()}

    @app.get("/api/config")
    async def site_config(site_id: str):
        """Resolved media config for a site, with the built-in fallbacks applied."""
        config = await config_client.fetch(site_id) if config_client is not None else None
        return {
            "site_id": site_id,
            "found": config is not None,
            "video_url": (config and config.video_url) or settings.placeholder_video_url,
            "audio_url": config.audio_url if config else None,
            "duration_seconds": (config and config.duration_seconds) or DEFAULT_DURATION_LIMIT_SECONDS,
        }

    @app.websocket("/ws/room")
    async def room_websocket(websocket: WebSocket):
        await websocket.accept()
        room = Room(
            query=dict(websocket.query_params),
            site_id=_site_id(websocket),
            origin=_origin(websocket, settings),
            config_client=config_client,
            placeholder_video_url=settings.placeholder_video_url,
        )
        logger.info("Room opened for %s in %s mode", room.site_id, room.mode)

        async def receive() -> dict:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Dropping non-JSON room message")
                return {}
            return message if isinstance(message, dict) else {}

        try:
            await room.run(websocket.send_json, receive)
        except WebSocketDisconnect:
            logger.info("Room disconnected for %s", room.site_id)

    return app


def main() -> None:
    load_dotenv()
    validate_config()
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        "callroom.server:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
    )


if __name__ == "__main__":
    main()
