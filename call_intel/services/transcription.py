"""
Transcription of call recordings.

The pipeline only needs text plus confidence and duration; the default
``DeepgramTranscriber`` gets them from Deepgram's pre-recorded audio API.
Failures are reported in the result, never raised.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx

from call_intel.config import get_settings
from call_intel.logging_config import get_logger
from call_intel.schemas.call import CallTranscript, TranscriptionResult

settings = get_settings()
logger = get_logger(__name__)

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"


class Transcriber(ABC):

    @abstractmethod
    async def transcribe(self, audio_ref: str) -> TranscriptionResult:
        """Transcribe the recording at ``audio_ref`` (a fetchable URL)."""


class DeepgramTranscriber(Transcriber):

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = settings.deepgram_api_key if api_key is None else api_key
        self._model = model or settings.transcription_model
        self._timeout = timeout_seconds or settings.transcription_timeout_seconds
        self._client = client

    async def transcribe(self, audio_ref: str) -> TranscriptionResult:
        if not self._api_key:
            return TranscriptionResult(success=False, error="Deepgram API key not configured")
        if not audio_ref:
            return TranscriptionResult(success=False, error="No recording to transcribe")

        try:
            payload = await asyncio.wait_for(self._request(audio_ref), timeout=self._timeout)
            transcript = self._parse(payload)
        except asyncio.TimeoutError:
            error = f"Transcription timed out after {self._timeout:g}s"
        except httpx.HTTPStatusError as e:
            error = f"Transcription API returned {e.response.status_code}"
        except httpx.HTTPError as e:
            error = f"Transcription request failed: {e}"
        except (KeyError, IndexError, TypeError, ValueError) as e:
            error = f"Unexpected transcription response: {e}"
        else:
            logger.info(
                "transcription_complete",
                characters=len(transcript.text),
                confidence=transcript.confidence,
                duration_seconds=transcript.duration_seconds,
            )
            return TranscriptionResult(success=True, transcript=transcript)

        logger.error("transcription_failed", error=error)
        return TranscriptionResult(success=False, error=error)

    async def _request(self, audio_ref: str) -> dict[str, Any]:
        request = {
            "url": DEEPGRAM_LISTEN_URL,
            "params": {"model": self._model, "smart_format": "true", "punctuate": "true", "detect_language": "true"},
            "headers": {"Authorization": f"Token {self._api_key}", "Content-Type": "application/json"},
            "json": {"url": audio_ref},
        }
        if self._client is not None:
            response = await self._client.post(**request)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(**request)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _parse(payload: dict[str, Any]) -> CallTranscript:
        channel = payload["results"]["channels"][0]
        alternative = channel["alternatives"][0]
        return CallTranscript(
            text=alternative.get("transcript", ""),
            confidence=float(alternative.get("confidence") or 0.0),
            duration_seconds=payload.get("metadata", {}).get("duration"),
            language=channel.get("detected_language"),
        )
