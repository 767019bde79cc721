import asyncio
import base64
import json

import httpx
import pytest

from talkinghead.errors import ConfigurationError, ProtocolError, ProviderError
from talkinghead.services.visionstory_client import (
    GenerationOptions,
    VisionStoryClient,
    mask_key,
)


def _client(handler, api_key="secret-key"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VisionStoryClient(api_key, base_url="https://vs.test/", http_client=http)


def test_missing_api_key_is_rejected():
    with pytest.raises(ConfigurationError):
        VisionStoryClient("")


def test_create_avatar_sends_inline_base64_with_api_key():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("X-API-Key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"avatar_id": "av-42"}})

    avatar_id = asyncio.run(_client(handler).create_avatar(b"png-bytes", "image/png"))

    assert avatar_id == "av-42"
    assert seen["url"] == "https://vs.test/api/v1/avatar"
    assert seen["key"] == "secret-key"
    inline = seen["body"]["inline_data"]
    assert inline["mime_type"] == "image/png"
    assert base64.b64decode(inline["data"]) == b"png-bytes"


def test_create_video_passes_generation_options():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"video_id": "vid-7"}})

    options = GenerationOptions(emotion="happy", resolution="1080p")
    video_id = asyncio.run(
        _client(handler).create_video("av-42", b"mp3-bytes", "audio/mp3", options)
    )

    assert video_id == "vid-7"
    body = seen["body"]
    assert body["model_id"] == "vs_talk_v1"
    assert body["avatar_id"] == "av-42"
    assert body["emotion"] == "happy"
    assert body["aspect_ratio"] == "9:16"
    assert body["resolution"] == "1080p"
    assert body["audio_script"]["voice_change"] is True
    assert body["audio_script"]["denoise"] is True
    assert body["audio_script"]["inline_data"]["mime_type"] == "audio/mp3"


def test_error_status_becomes_provider_error_with_body():
    def handler(request):
        return httpx.Response(401, text='{"message": "invalid key"}')

    with pytest.raises(ProviderError) as info:
        asyncio.run(_client(handler).create_avatar(b"x", "image/png"))

    assert info.value.status_code == 401
    assert "invalid key" in info.value.body


def test_transport_failure_becomes_provider_error_with_status_zero():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError) as info:
        asyncio.run(_client(handler).get_video_status("vid-1"))

    assert info.value.status_code == 0


def test_success_without_handle_is_protocol_error():
    def handler(request):
        return httpx.Response(200, json={"data": {}})

    with pytest.raises(ProtocolError):
        asyncio.run(_client(handler).create_avatar(b"x", "image/png"))
    with pytest.raises(ProtocolError):
        asyncio.run(_client(handler).create_video("av", b"x", "audio/mp3"))


def test_video_status_is_normalized():
    def handler(request):
        assert request.url.params["video_id"] == "vid-1"
        return httpx.Response(
            200, json={"data": {"status": "CREATED", "video_url": "https://cdn.test/v.mp4"}}
        )

    status = asyncio.run(_client(handler).get_video_status("vid-1"))

    assert status.status == "created"
    assert status.video_url == "https://cdn.test/v.mp4"
    assert status.is_ready


def test_non_json_body_is_protocol_error():
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(ProtocolError):
        asyncio.run(_client(handler).get_video_status("vid-1"))


def test_mask_key():
    assert mask_key("") == "NOT SET"
    assert mask_key("abcdefghij") == "abcdef..."
    assert mask_key("abc") == "***"
