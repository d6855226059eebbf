import base64

import httpx
import pytest

from interview_coach.errors import InvalidMediaRef, MediaTooLarge
from interview_coach.services.media_loader import load_media


def data_url(payload: bytes, mime: str = "video/webm") -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode()}"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_no_refs():
    assert await load_media(None) == []
    assert await load_media([]) == []


async def test_data_urls_are_decoded():
    media = await load_media([data_url(b"webm-bytes"), data_url(b"mp4-bytes", "video/mp4")], max_bytes=100)

    assert [m.data for m in media] == [b"webm-bytes", b"mp4-bytes"]
    assert [m.mime_type for m in media] == ["video/webm", "video/mp4"]
    assert [m.display_name for m in media] == ["answer-1", "answer-2"]


async def test_oversized_data_url_is_refused():
    with pytest.raises(MediaTooLarge) as exc:
        await load_media([data_url(b"x" * 400)], max_bytes=100)

    assert exc.value.status_code == 413


@pytest.mark.parametrize("ref", [
    "data:video/webm,not-base64-encoded",
    "data:video/webm;base64,***",
    "ftp://example.com/answer.webm",
    "/tmp/answer.webm",
])
async def test_invalid_refs_are_rejected(ref):
    with pytest.raises(InvalidMediaRef) as exc:
        await load_media([ref], max_bytes=100)

    assert exc.value.status_code == 400


async def test_http_media_is_downloaded():
    def handler(request):
        return httpx.Response(200, content=b"video-bytes", headers={"content-type": "video/mp4; codecs=avc1"})

    async with mock_client(handler) as client:
        media = await load_media(["https://cdn.example.com/a.mp4"], max_bytes=100, client=client)

    assert len(media) == 1
    assert media[0].data == b"video-bytes"
    assert media[0].mime_type == "video/mp4"


async def test_unreachable_media_is_skipped():
    def handler(request):
        if request.url.path == "/missing.webm":
            return httpx.Response(404)
        if request.url.path == "/down.webm":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"ok", headers={"content-type": "video/webm"})

    refs = [
        "https://cdn.example.com/missing.webm",
        "https://cdn.example.com/down.webm",
        "https://cdn.example.com/fine.webm",
    ]
    async with mock_client(handler) as client:
        media = await load_media(refs, max_bytes=100, client=client)

    assert [m.display_name for m in media] == ["answer-3"]


async def test_oversized_download_is_refused():
    def handler(request):
        return httpx.Response(200, content=b"x" * 500)

    async with mock_client(handler) as client:
        with pytest.raises(MediaTooLarge):
            await load_media(["https://cdn.example.com/huge.webm"], max_bytes=100, client=client)
