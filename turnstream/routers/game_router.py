import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse

from turnstream.services.hub import GameHub
from turnstream.services.identity import ClientIdentity, resolve
from turnstream.services.session import SessionNotFound
from turnstream.services.streams import FrameStream

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


def client_identity(request: Request) -> ClientIdentity:
    host = request.client.host if request.client else None
    return resolve(host, request.headers.get("x-forwarded-for"))


def _event_response(stream: FrameStream) -> StreamingResponse:
    async def gen():
        try:
            async for frame in stream.frames():
                yield f"data: {frame}\n\n"
        finally:
            # client went away, or the hub closed the stream
            stream.peer_closed()

    headers = dict(NO_STORE_HEADERS)
    headers["X-Accel-Buffering"] = "no"
    return StreamingResponse(gen(), media_type="text/event-stream", headers=headers)


def build_router(hub: GameHub) -> APIRouter:
    router = APIRouter()

    @router.get("/stream")
    async def open_stream(request: Request) -> StreamingResponse:
        stream = FrameStream(buffer=hub.config.stream_buffer)
        hub.open_stream(client_identity(request), stream)
        return _event_response(stream)

    if hub.supports_multiplayer:
        @router.get("/solo_stream")
        async def open_solo_stream(request: Request, difficulty: Optional[str] = None) -> StreamingResponse:
            stream = FrameStream(buffer=hub.config.stream_buffer)
            hub.open_solo_stream(client_identity(request), stream, difficulty)
            return _event_response(stream)

    @router.get("/move")
    async def submit_move(request: Request, position: Optional[str] = None) -> Response:
        identity = client_identity(request)
        try:
            hub.submit_move(identity.client_id, position)
        except SessionNotFound:
            logger.info("Move from %s with no active %s session", identity.client_id[:12], hub.game)
        return Response(content=hub.renderer.placeholder(), media_type="application/json", headers=NO_STORE_HEADERS)

    @router.get("/stats")
    async def stats() -> dict:
        return hub.stats()

    return router
