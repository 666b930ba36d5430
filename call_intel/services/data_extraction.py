"""
Data Extraction Service.

Turns call transcripts into structured appointment data. Language
understanding is delegated to a ``StructuredExtractor`` (the OpenAI
chat-completions API by default); this module validates what comes back,
normalizes confidence into [0, 1], adds deterministic quality-issue checks,
and reports every failure as a result instead of raising.
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import ValidationError as SchemaError

from call_intel.config import get_settings
from call_intel.errors import ExternalServiceError
from call_intel.logging_config import get_logger
from call_intel.schemas.extraction import AppointmentData, ExtractionResult
from call_intel.services.date_parsing import parse_natural_date
from call_intel.services.phone import find_phone_numbers, is_valid_phone

settings = get_settings()
logger = get_logger(__name__)

MIN_TRANSCRIPT_LENGTH = 10

# Quality issue tags
ISSUE_INSUFFICIENT_TRANSCRIPT = "insufficient transcription data"
ISSUE_EXTRACTION_FAILED = "extraction processing failed"
ISSUE_NO_APPOINTMENT = "no appointment request detected"
ISSUE_NO_SERVICE_TYPE = "no service type mentioned"
ISSUE_NO_ADDRESS = "service address missing"
ISSUE_NO_CONTACT = "no customer contact information"
ISSUE_AMBIGUOUS_DATE = "ambiguous date"
ISSUE_INVALID_PHONE = "invalid phone number format"
ISSUE_CONFLICTING_PHONES = "conflicting phone numbers stated"
ISSUE_MULTIPLE_APPOINTMENTS = "multiple appointments requested"


# The extraction prompt sent to the LLM after the call ends.
EXTRACTION_PROMPT = """You extract appointment requests from phone call transcriptions for home service businesses (plumbing, electrical, HVAC, cleaning, landscaping and similar trades).

Analyze the transcription below. If the caller is not requesting any service or appointment, say so clearly with hasAppointment=false.

CALL TRANSCRIPTION:
\"\"\"
{transcript}
\"\"\"

Respond ONLY with a JSON object of this exact shape:
{
  "hasAppointment": boolean,
  "appointmentCount": number,
  "confidence": number,
  "customerName": string | null,
  "customerPhone": string | null,
  "customerEmail": string | null,
  "serviceType": string | null,
  "jobDescription": string | null,
  "urgencyLevel": "emergency" | "urgent" | "high" | "normal" | "low" | "routine" | null,
  "preferredDate": string | null,
  "preferredTime": string | null,
  "timeFlexibility": "strict" | "flexible" | "any_time" | null,
  "serviceAddress": string | null,
  "addressConfidence": number | null,
  "quotedPrice": number | null,
  "budgetMentioned": number | null,
  "pricingDiscussion": string | null,
  "issues": string[],
  "notes": string | null
}

GUIDELINES:
1. hasAppointment=true only if the caller actually requests service or scheduling.
2. appointmentCount is the number of separate jobs requested (0 if none).
3. confidence and addressConfidence are between 0.0 and 1.0. Be conservative: lower is better than overconfident.
4. urgencyLevel: "emergency" = immediate repair, "urgent" = ASAP, "normal" = regular scheduling, "routine" = maintenance.
5. preferredDate keeps the caller's words ("tomorrow", "next Friday") or an ISO date.
6. timeFlexibility: "strict" = specific time required, "flexible" = some flexibility, "any_time" = very flexible.
7. Record any pricing discussion, even if approximate.
8. List in "issues" anything critical that is missing or unclear (incomplete address, vague description, audio problems)."""


class StructuredExtractor(ABC):
    """Capability: given transcript text, return the appointment JSON object."""

    model_name: str = "unknown"

    @abstractmethod
    async def extract(self, transcript: str) -> dict[str, Any]:
        ...


class OpenAIExtractor(StructuredExtractor):
    """
    Chat-completions extractor with JSON response format.

    Raises ExternalServiceError, httpx.HTTPError or ValueError on failure;
    ExtractionEngine turns all of them into failed results.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = settings.openai_api_key if api_key is None else api_key
        self.model_name = model or settings.extraction_model
        self._base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._client = client

    async def extract(self, transcript: str) -> dict[str, Any]:
        if not self._api_key:
            raise ExternalServiceError("openai", "API key not configured")

        prompt = EXTRACTION_PROMPT.replace("{transcript}", transcript)
        request = {
            "url": f"{self._base_url}/chat/completions",
            "headers": {
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            "json": {
                "model": self.model_name,
                "messages": [
                    {"role": "system", "content": "You are a precise data extraction system. Return only valid JSON."},
                    {"role": "user", "content": prompt},
                ],
                "response_format": {"type": "json_object"},
                "temperature": 0.1,  # Low temperature for consistent extraction
                "max_tokens": 1000,
            },
        }

        if self._client is not None:
            response = await self._client.post(**request)
        else:
            async with httpx.AsyncClient(timeout=settings.extraction_timeout_seconds) as client:
                response = await client.post(**request)
        response.raise_for_status()

        content = response.json()["choices"][0]["message"]["content"]
        if not content:
            raise ExternalServiceError("openai", "empty extraction response")

        parsed = json.loads(content)
        if not isinstance(parsed, dict):
            raise ExternalServiceError("openai", "extraction response is not a JSON object")
        return parsed


class ExtractionEngine:
    """Validates, scores and wraps structured extraction of one transcript."""

    def __init__(
        self,
        extractor: StructuredExtractor | None = None,
        timeout_seconds: float | None = None,
        issue_penalty: float | None = None,
    ) -> None:
        self._extractor = extractor or OpenAIExtractor()
        self._timeout = timeout_seconds or settings.extraction_timeout_seconds
        self._issue_penalty = settings.issue_confidence_penalty if issue_penalty is None else issue_penalty

    @property
    def model_name(self) -> str:
        return self._extractor.model_name

    async def extract(self, transcript_text: str, caller_phone: Optional[str] = None) -> ExtractionResult:
        """
        Extract appointment data. Never raises.

        Args:
            transcript_text: Full call transcript.
            caller_phone: Caller ID, used when nobody states a number.
        """
        start = time.monotonic()
        text = (transcript_text or "").strip()

        if len(text) < MIN_TRANSCRIPT_LENGTH:
            logger.info("extraction_skipped_short_transcript", transcript_length=len(text))
            return ExtractionResult(
                success=False,
                error="Transcription too short or empty",
                data=AppointmentData(has_appointment=False, confidence=0.0, issues=[ISSUE_INSUFFICIENT_TRANSCRIPT]),
                processing_time_ms=_elapsed_ms(start),
            )

        logger.info("extraction_started", transcript_length=len(text), model=self.model_name)

        try:
            raw = await asyncio.wait_for(self._extractor.extract(text), timeout=self._timeout)
            data = AppointmentData.model_validate(raw)
        except asyncio.TimeoutError:
            return self._failed(start, f"Extraction timed out after {self._timeout:g}s")
        except httpx.HTTPStatusError as e:
            return self._failed(start, f"Extraction API returned {e.response.status_code}")
        except httpx.HTTPError as e:
            return self._failed(start, f"Extraction API request failed: {e}")
        except SchemaError as e:
            return self._failed(start, f"Extraction response failed schema validation: {e.error_count()} error(s)")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            return self._failed(start, f"Failed to parse extraction results: {e}")
        except ExternalServiceError as e:
            return self._failed(start, str(e))
        except Exception as e:
            logger.error("extraction_unexpected_error", error=str(e), model=self.model_name, exc_info=True)
            return self._failed(start, f"Extraction failed: {e}")

        if not data.customer_phone and caller_phone:
            data = data.model_copy(update={"customer_phone": caller_phone})

        issues = self.detect_issues(data, text)
        confidence = max(0.0, round(data.confidence - self._issue_penalty * len(issues), 4))
        data = data.model_copy(update={"issues": issues, "confidence": confidence})

        logger.info(
            "extraction_complete",
            has_appointment=data.has_appointment,
            confidence=confidence,
            issues=len(issues),
            service_type=data.service_type,
        )

        return ExtractionResult(
            success=True,
            data=data,
            processing_time_ms=_elapsed_ms(start),
            raw_extraction=raw,
        )

    @staticmethod
    def detect_issues(data: AppointmentData, transcript: str) -> list[str]:
        """Model-reported issues plus local deterministic checks, de-duplicated."""
        issues: list[str] = []
        seen: set[str] = set()

        def add(issue: str) -> None:
            key = issue.strip().lower()
            if key and key not in seen:
                seen.add(key)
                issues.append(issue.strip())

        for issue in data.issues:
            add(issue)

        if not data.has_appointment:
            add(ISSUE_NO_APPOINTMENT)
        else:
            if not data.service_type:
                add(ISSUE_NO_SERVICE_TYPE)
            if not data.service_address:
                add(ISSUE_NO_ADDRESS)
            if not (data.customer_name or data.customer_phone or data.customer_email):
                add(ISSUE_NO_CONTACT)

        if data.preferred_date and parse_natural_date(data.preferred_date) is None:
            add(ISSUE_AMBIGUOUS_DATE)
        if data.customer_phone and not is_valid_phone(data.customer_phone):
            add(ISSUE_INVALID_PHONE)
        if len(find_phone_numbers(transcript)) > 1:
            add(ISSUE_CONFLICTING_PHONES)
        if data.appointment_count > 1:
            add(ISSUE_MULTIPLE_APPOINTMENTS)

        return issues

    def _failed(self, start: float, error: str) -> ExtractionResult:
        logger.error("extraction_llm_error", error=error, model=self.model_name)
        return ExtractionResult(
            success=False,
            error=error,
            data=AppointmentData(has_appointment=False, confidence=0.0, issues=[ISSUE_EXTRACTION_FAILED]),
            processing_time_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
