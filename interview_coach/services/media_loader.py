# services/media_loader.py
"""Resolve media references (data URLs or http(s) URLs) into raw payloads for analysis."""
import base64
import binascii
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from interview_coach.config import get_settings
from interview_coach.errors import InvalidMediaRef, MediaTooLarge
from interview_coach.models.interview import MediaPayload
from interview_coach.utils.logger import get_logger

logger = get_logger("MediaLoader")

DEFAULT_MIME_TYPE = "video/webm"


def _decode_data_url(ref: str, index: int, max_bytes: int) -> MediaPayload:
    header, sep, body = ref.partition(",")
    if not sep or not header.endswith(";base64"):
        raise InvalidMediaRef(ref, "only base64 data URLs are supported")
    mime_type = header[len("data:"):-len(";base64")] or DEFAULT_MIME_TYPE
    # base64 is 4 chars per 3 bytes; refuse before decoding anything huge
    if len(body) * 3 // 4 > max_bytes + 3:
        raise MediaTooLarge(len(body) * 3 // 4, max_bytes)
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidMediaRef(ref, f"bad base64 payload ({e})") from e
    if len(data) > max_bytes:
        raise MediaTooLarge(len(data), max_bytes)
    return MediaPayload(data=data, mime_type=mime_type, display_name=f"answer-{index + 1}")


async def _download(client: httpx.AsyncClient, url: str, index: int, max_bytes: int) -> Optional[MediaPayload]:
    try:
        async with client.stream("GET", url) as response:
            if response.status_code != 200:
                logger.warning(f"Skipping media {index + 1}: HTTP {response.status_code}")
                return None
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise MediaTooLarge(int(declared), max_bytes)

            buf = bytearray()
            async for chunk in response.aiter_bytes():
                buf.extend(chunk)
                if len(buf) > max_bytes:
                    raise MediaTooLarge(len(buf), max_bytes)
            mime_type = response.headers.get("content-type", DEFAULT_MIME_TYPE).split(";")[0].strip()
    except httpx.HTTPError as e:
        logger.warning(f"Skipping media {index + 1}: download failed ({e})")
        return None

    return MediaPayload(data=bytes(buf), mime_type=mime_type or DEFAULT_MIME_TYPE,
                        display_name=f"answer-{index + 1}")


async def load_media(refs: Optional[Sequence[str]], max_bytes: Optional[int] = None,
                     client: Optional[httpx.AsyncClient] = None) -> List[MediaPayload]:
    """
    Load every reference. Unreachable URLs are skipped (analysis goes on
    without them); anything over max_bytes is refused outright.
    """
    if not refs:
        return []
    max_bytes = max_bytes or get_settings().analysis_max_media_bytes

    media: List[MediaPayload] = []
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=60.0, follow_redirects=True)
    try:
        for index, ref in enumerate(refs):
            if not ref:
                continue
            if ref.startswith("data:"):
                media.append(_decode_data_url(ref, index, max_bytes))
                continue
            if urlparse(ref).scheme not in ("http", "https"):
                raise InvalidMediaRef(ref, "expected a data: or http(s) URL")
            payload = await _download(client, ref, index, max_bytes)
            if payload is not None:
                media.append(payload)
    finally:
        if owns_client:
            await client.aclose()

    logger.info(f"Loaded {len(media)}/{len(refs)} media item(s)")
    return media
