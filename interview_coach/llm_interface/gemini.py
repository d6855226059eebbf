# llm_interface/gemini.py
import asyncio
import concurrent.futures
import io
import time
from typing import Any, Optional, Sequence

import google.generativeai as genai

from interview_coach.errors import LLMServiceError
from interview_coach.utils.logger import get_logger

log = get_logger(__name__)

_configured_key: Optional[str] = None

FILE_POLL_SECONDS = 2.0
FILE_READY_TIMEOUT_SECONDS = 120.0


def configure(api_key: str) -> None:
    """Configure the SDK once per key."""
    global _configured_key
    if api_key and api_key != _configured_key:
        genai.configure(api_key=api_key)
        _configured_key = api_key
        log.info("Gemini SDK configured.")


def _response_text(resp: Any) -> str:
    try:
        return resp.text or ""
    except ValueError:
        # no text part: blocked or cut off. Log what the candidates say.
        finish = None
        candidates_len = None
        candidates = getattr(resp, "candidates", None)
        if candidates is not None:
            candidates_len = len(candidates)
            finish = getattr(candidates[0], "finish_reason", None) if candidates_len else None
        log.warning(f"Gemini returned no text. candidates={candidates_len} finish_reason={finish}")
        return ""


def _call_sync_generate(model_name: str, contents: Sequence[Any], temperature: float,
                        max_output_tokens: int, response_mime_type: Optional[str] = None) -> str:
    """
    Synchronous call to Gemini. This will be run in a thread pool by the async wrapper.
    """
    config = {"temperature": temperature, "max_output_tokens": max_output_tokens}
    if response_mime_type:
        config["response_mime_type"] = response_mime_type
    model = genai.GenerativeModel(model_name=model_name)
    resp = model.generate_content(list(contents), generation_config=config)
    return _response_text(resp)


def _call_sync_upload(data: bytes, mime_type: str, display_name: str) -> Any:
    uploaded = genai.upload_file(io.BytesIO(data), mime_type=mime_type, display_name=display_name)
    # video files are processed server side before they can be referenced
    deadline = time.monotonic() + FILE_READY_TIMEOUT_SECONDS
    while uploaded.state.name == "PROCESSING":
        if time.monotonic() > deadline:
            raise LLMServiceError(f"Uploaded file {uploaded.name} still processing after "
                                  f"{FILE_READY_TIMEOUT_SECONDS:.0f}s")
        time.sleep(FILE_POLL_SECONDS)
        uploaded = genai.get_file(uploaded.name)
    if uploaded.state.name == "FAILED":
        raise LLMServiceError(f"Gemini could not process uploaded file {uploaded.name}")
    return uploaded


async def _run(func, *args) -> Any:
    loop = asyncio.get_running_loop()
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return await loop.run_in_executor(pool, func, *args)


async def generate_from_gemini(model_name: str, contents: Sequence[Any], temperature: float,
                               max_output_tokens: int, response_mime_type: Optional[str] = None) -> str:
    """
    Async wrapper: runs the sync call in a threadpool to avoid blocking event loop.
    Raises whatever the SDK raises; callers classify and retry.
    """
    return await _run(_call_sync_generate, model_name, contents, temperature, max_output_tokens,
                      response_mime_type)


async def upload_to_gemini(data: bytes, mime_type: str, display_name: str) -> Any:
    """Upload media through the File API; returns the file handle usable as a content part."""
    uploaded = await _run(_call_sync_upload, data, mime_type, display_name)
    log.info(f"Uploaded {display_name} ({len(data) / 1024 / 1024:.2f}MB) as {uploaded.name}")
    return uploaded


async def delete_from_gemini(name: str) -> None:
    await _run(genai.delete_file, name)
    log.info(f"Deleted uploaded file {name}")
