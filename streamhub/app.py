"""
app.py — FastAPI application factory for the live stream hub.

One LiveHub per app, kept on app.state.live_hub and shared by the WebSocket
endpoint and the HTTP viewer routes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from streamhub.hub_config import HubConfig, load_hub_config
from streamhub.idle_reaper import reap_idle_loop
from streamhub.viewer_routes import router as viewer_router
from streamhub.ws_hub import LiveHub
from streamhub.ws_routes import create_ws_router

logger = logging.getLogger(__name__)


def create_app(config: Optional[HubConfig] = None, hub: Optional[LiveHub] = None) -> FastAPI:
    config = config or load_hub_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper = None
        if config.idle_timeout_s > 0:
            reaper = asyncio.create_task(
                reap_idle_loop(app.state.live_hub, config.idle_timeout_s, config.reap_interval_s)
            )
            logger.info(
                "Idle reaper started (timeout %.0fs, every %.0fs)",
                config.idle_timeout_s, config.reap_interval_s,
            )
        logger.info("Live hub ready on %s", config.ws_path)
        try:
            yield
        finally:
            if reaper is not None:
                reaper.cancel()
                try:
                    await reaper
                except asyncio.CancelledError:
                    pass
            logger.info("Live hub shut down (%d clients were connected)", app.state.live_hub.client_count)

    app = FastAPI(title="streamhub", lifespan=lifespan)
    app.state.config = config
    app.state.live_hub = hub if hub is not None else LiveHub()
    app.include_router(create_ws_router(config.ws_path))
    app.include_router(viewer_router)
    return app
