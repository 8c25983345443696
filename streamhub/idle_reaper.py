"""
idle_reaper.py — optional background task that drops silent connections.

Runs alongside the app (started from the lifespan when idle_timeout_s > 0).
Each sweep goes through LiveHub.reap_idle, which uses the normal disconnect
path, so reaped viewers trigger the same viewer_count updates as a close.
"""

import asyncio
import logging

from streamhub.ws_hub import LiveHub

logger = logging.getLogger(__name__)


async def reap_idle_loop(hub: LiveHub, idle_timeout_s: float, interval_s: float = 30.0) -> None:
    """Background task that reaps idle connections every interval_s."""
    while True:
        await asyncio.sleep(interval_s)
        reaped = hub.reap_idle(idle_timeout_s)
        if reaped:
            logger.info("Reaped %d idle live connection(s)", len(reaped))
