"""Moderation router -- abuse reports, thread freezes, flags and retention purge."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from msgguard.auth.models import Actor
from msgguard.engine import MessagingEngine
from web.backend.app.middleware.auth import get_current_actor, get_engine
from web.backend.app.models.api import (
    CreateReportRequest,
    FlagRecordResponse,
    PurgeResponse,
    ReportDetailResponse,
    ReportEnvelope,
    ReportListResponse,
    ReportResponse,
    UpdateReportStatusRequest,
)

router = APIRouter(prefix="/api/messages", tags=["moderation"])


@router.get("/reports", response_model=ReportListResponse, summary="List reports of the workspace")
async def list_reports(
    limit: int = Query(200, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    page = await engine.reports.list_reports(actor, limit=limit, offset=offset)
    return ReportListResponse.model_validate(page)


@router.post(
    "/reports",
    response_model=ReportEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Report a thread or a message",
)
async def create_report(
    body: CreateReportRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    report = await engine.reports.create_report(
        actor,
        body.thread_id,
        body.reason,
        message_id=body.message_id,
        details=body.details,
    )
    return ReportEnvelope(report=ReportResponse.model_validate(report))


@router.post(
    "/reports/{report_id}/status",
    response_model=ReportEnvelope,
    summary="Change a report's status",
)
async def update_report_status(
    report_id: str,
    body: UpdateReportStatusRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    """Move a report between open, in_review and resolved.

    ``freeze_thread`` true freezes the reported thread, false unfreezes it,
    and omitting it leaves the freeze as it is.
    """
    report = await engine.reports.update_status(
        actor,
        report_id,
        body.status,
        freeze_thread=body.freeze_thread,
        resolution_note=body.resolution_note,
    )
    return ReportEnvelope(report=ReportResponse.model_validate(report))


@router.get(
    "/reports/{report_id}/messages",
    response_model=ReportDetailResponse,
    summary="Inspect a reported thread",
)
async def report_detail(
    report_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    detail = await engine.reports.report_detail(actor, report_id)
    return ReportDetailResponse.model_validate(detail)


@router.get(
    "/threads/{thread_id}/flags",
    response_model=list[FlagRecordResponse],
    summary="Content guard findings attached to a thread",
)
async def thread_flags(
    thread_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    rows = await engine.moderation.flags_for_thread(actor, thread_id)
    return [FlagRecordResponse(**r) for r in rows]


@router.post("/purge", response_model=PurgeResponse, summary="Redact messages past retention")
async def purge(
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    redacted = await engine.moderation.purge_expired(actor)
    return PurgeResponse(redacted_messages=redacted)
