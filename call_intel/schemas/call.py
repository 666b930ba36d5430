"""
Data models for inbound call records and their transcripts.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CallStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_APPOINTMENT = "no_appointment"


class CallTranscript(BaseModel):
    """Transcript produced once per call by the transcription collaborator."""

    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    duration_seconds: Optional[float] = None
    language: Optional[str] = None


class CallRecord(BaseModel):
    id: str
    user_id: str
    phone_number: Optional[str] = None
    recording_url: Optional[str] = None
    status: CallStatus = CallStatus.PROCESSING
    transcript: Optional[str] = None
    transcript_confidence: Optional[float] = None
    duration_seconds: Optional[float] = None
    failure_reason: Optional[str] = None
    retry_count: int = 0
    created_at: datetime


class TranscriptionResult(BaseModel):
    """Outcome of a transcription attempt. Failure is reported, not raised."""

    success: bool
    transcript: Optional[CallTranscript] = None
    error: Optional[str] = None


class CallCreate(BaseModel):
    """A finished call handed over by telephony (recording and/or transcript)."""

    phone_number: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    duration_seconds: Optional[float] = Field(default=None, ge=0)


class PipelineOutcome(BaseModel):
    """What processing one call produced. Stage failures are reported here."""

    call_id: str
    status: CallStatus
    extraction_id: Optional[str] = None
    customer_id: Optional[str] = None
    is_new_customer: bool = False
    job_id: Optional[str] = None
    confidence: Optional[float] = None
    error: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
