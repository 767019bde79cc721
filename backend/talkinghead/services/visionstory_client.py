from __future__ import annotations
"""VisionStory provider client — avatar creation, video creation, status.

All three calls share one shape:
  JSON body, binary payloads as inline base64 with an explicit MIME type,
  authenticated with the ``X-API-Key`` header.

Every non-success response (and every transport failure) becomes a
ProviderError; a success response missing the handle we need becomes a
ProtocolError. Nothing else in the service knows about the wire format.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from talkinghead.config import Settings
from talkinghead.errors import ConfigurationError, ProtocolError, ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationOptions:
    """Video generation parameters, passed through to the provider verbatim."""

    model: str = "vs_talk_v1"
    emotion: str = "news"
    aspect_ratio: str = "9:16"
    resolution: str = "720p"
    voice_change: bool = True
    denoise: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationOptions":
        return cls(
            model=settings.VIDEO_MODEL,
            emotion=settings.VIDEO_EMOTION,
            aspect_ratio=settings.VIDEO_ASPECT_RATIO,
            resolution=settings.VIDEO_RESOLUTION,
            voice_change=settings.VIDEO_VOICE_CHANGE,
            denoise=settings.VIDEO_DENOISE,
        )


@dataclass
class VideoStatus:
    """Provider-side state of one video: queued | processing | created | failed."""

    video_id: str
    status: str
    video_url: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def is_ready(self) -> bool:
        return self.status == "created" and bool(self.video_url)


def mask_key(key: str) -> str:
    """Show only the first few characters of a secret in logs."""
    if not key:
        return "NOT SET"
    return f"{key[:6]}..." if len(key) > 6 else "***"


class VisionStoryClient:
    """Async client for the VisionStory OpenAPI.

    The API key is injected at construction so tests and tenants can use
    their own credentials. Pass ``http_client`` to share a connection pool
    (or a mock transport); otherwise the client owns one and closes it in
    ``aclose()``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://openapi.visionstory.ai",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ConfigurationError("VisionStory API key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._own_client = http_client is None

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "VisionStoryClient":
        return cls(
            settings.require_api_key(),
            base_url=settings.VISIONSTORY_API_BASE,
            timeout=settings.VISIONSTORY_TIMEOUT,
            http_client=http_client,
        )

    async def __aenter__(self) -> "VisionStoryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "X-API-Key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_avatar(self, image_bytes: bytes, mime_type: str) -> str:
        """Create an avatar from an image; returns the provider avatar id."""
        payload = {"inline_data": _inline_data(image_bytes, mime_type)}
        logger.info(
            "Creating avatar (%s, %d bytes, key=%s)",
            mime_type, len(image_bytes), mask_key(self._api_key),
        )
        data = await self._request("POST", "/api/v1/avatar", "avatar creation", json=payload)
        avatar_id = (data.get("data") or {}).get("avatar_id")
        if not avatar_id:
            raise ProtocolError("Avatar creation succeeded but no avatar_id was returned.")
        logger.info("Avatar created: %s", avatar_id)
        return str(avatar_id)

    async def create_video(
        self,
        avatar_id: str,
        audio_bytes: bytes,
        mime_type: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Start a talking-head video render; returns the provider video id."""
        options = options or GenerationOptions()
        payload = {
            "model_id": options.model,
            "avatar_id": avatar_id,
            "audio_script": {
                "inline_data": _inline_data(audio_bytes, mime_type),
                "voice_change": options.voice_change,
                "denoise": options.denoise,
            },
            "emotion": options.emotion,
            "aspect_ratio": options.aspect_ratio,
            "resolution": options.resolution,
        }
        logger.info("Creating video for avatar %s (model=%s)", avatar_id, options.model)
        data = await self._request("POST", "/api/v1/video", "video creation", json=payload)
        video_id = (data.get("data") or {}).get("video_id")
        if not video_id:
            raise ProtocolError("Video creation request succeeded but no video_id was returned.")
        logger.info("Video creation started: %s", video_id)
        return str(video_id)

    async def get_video_status(self, video_id: str) -> VideoStatus:
        data = await self._request(
            "GET", "/api/v1/video", "video status check", params={"video_id": video_id}
        )
        detail = data.get("data") or {}
        status = detail.get("status")
        if not status:
            raise ProtocolError(f"Video status response for {video_id} has no status")
        return VideoStatus(
            video_id=video_id,
            status=str(status).lower(),
            video_url=detail.get("video_url") or None,
            detail=detail,
        )

    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> dict:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("VisionStory %s transport error: %s", action, exc)
            raise ProviderError(f"VisionStory {action} failed: {exc}", status_code=0, body=str(exc)) from exc

        if response.is_error:
            body = response.text
            logger.error(
                "VisionStory %s failed: status=%d body=%s",
                action, response.status_code, body[:500],
            )
            raise ProviderError(
                f"VisionStory {action} failed with status {response.status_code}: {body[:500]}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"VisionStory {action} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"VisionStory {action} returned an unexpected payload")
        return data


def _inline_data(payload: bytes, mime_type: str) -> dict[str, str]:
    return {
        "mime_type": mime_type,
        "data": base64.b64encode(payload).decode("utf-8"),
    }
