import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import uvicorn

from turnstream.config import HubConfig, get_config
from turnstream.routers.game_router import build_router
from turnstream.services.hub import GameHub

GAMES = ("connect4", "tictactoe", "hangman")

logging.basicConfig(
    level=logging.DEBUG if get_config().debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def create_app(config: Optional[HubConfig] = None) -> FastAPI:
    config = config or get_config()
    hubs = {game: GameHub(game, config=config) for game in GAMES}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for hub in hubs.values():
            await hub.start()
        try:
            yield
        finally:
            for hub in hubs.values():
                await hub.stop()

    app = FastAPI(title="turnstream", lifespan=lifespan)
    app.state.hubs = hubs

    # Health check
    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    for game, hub in hubs.items():
        app.include_router(build_router(hub), prefix=f"/v1/{game}", tags=[game])
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
