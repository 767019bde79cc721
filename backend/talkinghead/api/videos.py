from __future__ import annotations
"""Provider status passthrough for a known VisionStory video id."""

from fastapi import APIRouter, Depends, HTTPException

from talkinghead.api.deps import get_provider_client
from talkinghead.errors import ProtocolError, ProviderError
from talkinghead.schemas.job import ProviderVideoStatus
from talkinghead.services.visionstory_client import VisionStoryClient

router = APIRouter()


@router.get("/videos/{video_id}", response_model=ProviderVideoStatus)
async def get_video_status(
    video_id: str,
    client: VisionStoryClient | None = Depends(get_provider_client),
):
    if client is None:
        raise HTTPException(status_code=500, detail="VisionStory API key is not configured")
    try:
        status = await client.get_video_status(video_id)
    except ProviderError as e:
        raise HTTPException(
            status_code=e.status_code or 502,
            detail={"error": "Failed to check video status.", "details": e.body or str(e)},
        )
    except ProtocolError as e:
        raise HTTPException(status_code=502, detail={"error": str(e)})

    if status.is_ready:
        return ProviderVideoStatus(
            video_id=video_id,
            status="completed",
            video_url=status.video_url,
            message="Video is ready",
            detail=status.detail,
        )
    return ProviderVideoStatus(
        video_id=video_id,
        status=status.status,
        video_url=status.video_url,
        message=f"Video is {status.status}",
        detail=status.detail,
    )
