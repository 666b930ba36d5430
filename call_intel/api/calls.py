"""
API Router — Call Endpoints.

Telephony hands finished calls over here; processing runs inline on
request or later through the call processor worker.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from call_intel.api.deps import Services, get_current_user, get_services
from call_intel.errors import NotFoundError, ValidationError
from call_intel.logging_config import get_logger
from call_intel.schemas.call import CallCreate, CallRecord, PipelineOutcome

logger = get_logger(__name__)
router = APIRouter(prefix="/calls", tags=["Calls"])


async def _owned_call(services: Services, user_id: str, call_id: str) -> CallRecord:
    row = await services.store.get_call(call_id)
    if not row or row["user_id"] != user_id:
        raise NotFoundError("Call", call_id)
    return CallRecord.model_validate(row)


@router.post("/", response_model=CallRecord, status_code=201)
async def register_call(
    body: CallCreate,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> CallRecord:
    """Store a finished call. The worker picks it up for processing."""
    if not (body.transcript or body.recording_url):
        raise ValidationError("Either transcript or recording_url is required")
    return await services.pipeline.register_call(user_id, body)


@router.post("/ingest", response_model=PipelineOutcome)
async def ingest_call(
    body: CallCreate,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> PipelineOutcome:
    """Store a finished call and process it before responding."""
    if not (body.transcript or body.recording_url):
        raise ValidationError("Either transcript or recording_url is required")
    call = await services.pipeline.register_call(user_id, body)
    return await services.pipeline.process_call(call.id)


@router.post("/{call_id}/process", response_model=PipelineOutcome)
async def process_call(
    call_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> PipelineOutcome:
    """(Re)process a call. Returns the existing extraction if there is one."""
    await _owned_call(services, user_id, call_id)
    return await services.pipeline.process_call(call_id)


@router.get("/{call_id}", response_model=CallRecord)
async def get_call(
    call_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> CallRecord:
    """Current status and transcript of a call."""
    return await _owned_call(services, user_id, call_id)
