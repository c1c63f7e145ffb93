"""Voice-note transcription for inbound WhatsApp media."""

import mimetypes
import time
from typing import Optional, Sequence

import httpx

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.schemas.webhook import MediaItem
from orderdesk.services.llm import LLMProvider
from orderdesk.services.llm.openai_provider import OpenAIError
from orderdesk.services.messenger import TwilioMessenger
from orderdesk.services.result import Result

logger = get_logger("media_service")


def first_audio(media: Sequence[MediaItem]) -> Optional[MediaItem]:
    return next((item for item in media if item.kind == "audio"), None)


def transcribe_media(
    media: MediaItem,
    messenger: TwilioMessenger,
    llm: LLMProvider,
) -> Result[str]:
    """Download one audio attachment and return its transcript."""
    download = messenger.download_media(media.url)
    if not download.ok:
        return Result.failure(download.error or "download failed", code="download_failed")
    audio_bytes, content_type = download.value
    mime_type = media.content_type or content_type or "audio/ogg"
    extension = mimetypes.guess_extension(mime_type.split(";")[0].strip()) or ".ogg"

    started = time.monotonic()
    try:
        text = llm.transcribe_audio(
            audio_bytes=audio_bytes,
            filename=f"voice{extension}",
            mime_type=mime_type,
            model=settings.transcription_model,
            timeout_seconds=settings.intent_timeout_seconds,
        )
    except (httpx.HTTPError, OpenAIError) as e:
        logger.error(f"Transcription failed: {e}")
        return Result.failure(str(e), code="transcription_failed")

    logger.info(
        "Timing",
        extra={
            "context": {
                "stage": "transcription_ms",
                "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                "bytes": len(audio_bytes),
            }
        },
    )
    text = (text or "").strip()
    if not text:
        return Result.failure("empty transcript", code="empty_transcript")
    return Result.success(text)
