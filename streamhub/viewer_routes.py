"""
Viewer count endpoints.

Lets plain HTTP callers read "N watching" straight from the live hub,
without opening a socket. Counts are live, never persisted.
"""

from typing import List

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from streamhub.ws_hub import LiveHub

router = APIRouter(prefix="/api", tags=["streams"])


# ============================================================================
# Response Models
# ============================================================================

class StreamViewers(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stream_id: str = Field(alias="streamId")
    viewer_count: int = Field(alias="viewerCount")


class StreamList(BaseModel):
    streams: List[StreamViewers]


def get_live_hub(request: Request) -> LiveHub:
    return request.app.state.live_hub


@router.get("/streams", response_model=StreamList)
async def list_watched_streams(hub: LiveHub = Depends(get_live_hub)):
    """Streams with at least one connected viewer, busiest first."""
    snapshot = sorted(hub.streams_snapshot().items(), key=lambda kv: (-kv[1], kv[0]))
    return StreamList(
        streams=[StreamViewers(stream_id=sid, viewer_count=n) for sid, n in snapshot]
    )


@router.get("/streams/{stream_id}/viewers", response_model=StreamViewers)
async def get_stream_viewers(stream_id: str, hub: LiveHub = Depends(get_live_hub)):
    return StreamViewers(stream_id=stream_id, viewer_count=hub.viewer_count(stream_id))
