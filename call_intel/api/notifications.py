"""
API Router — Notifications and Verification Codes.

Both are backed by Redis keyed TTL state; nothing here touches the
record store.
"""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from call_intel.api.deps import Services, get_current_user, get_services
from call_intel.config import get_settings
from call_intel.schemas.notification import Notification

router = APIRouter(tags=["Notifications"])


class MarkAllReadResponse(BaseModel):
    marked: int


class IssueCodeRequest(BaseModel):
    channel: Literal["phone", "email"]
    target: str


class IssueCodeResponse(BaseModel):
    sent: bool = True
    expires_in: int
    code: Optional[str] = None  # development only; delivery (SMS/email) is external


class VerifyCodeRequest(BaseModel):
    channel: Literal["phone", "email"]
    target: str
    code: str


class VerifyCodeResponse(BaseModel):
    verified: bool


@router.get("/notifications", response_model=list[Notification])
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=100),
    unread_only: bool = False,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[Notification]:
    """Newest first."""
    return await services.notifications.list_notifications(user_id, limit=limit, unread_only=unread_only)


@router.post("/notifications/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> MarkAllReadResponse:
    return MarkAllReadResponse(marked=await services.notifications.mark_all_read(user_id))


@router.post("/notifications/{notification_id}/read", status_code=204)
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> None:
    if not await services.notifications.mark_read(user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")


@router.post("/verification/send", response_model=IssueCodeResponse, tags=["Verification"])
async def send_verification_code(
    body: IssueCodeRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> IssueCodeResponse:
    settings = get_settings()
    code = await services.verification.issue(body.channel, body.target)
    return IssueCodeResponse(
        expires_in=settings.verification_code_ttl_seconds,
        code=code if settings.is_development else None,
    )


@router.post("/verification/verify", response_model=VerifyCodeResponse, tags=["Verification"])
async def verify_code(
    body: VerifyCodeRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> VerifyCodeResponse:
    return VerifyCodeResponse(verified=await services.verification.verify(body.channel, body.target, body.code))
