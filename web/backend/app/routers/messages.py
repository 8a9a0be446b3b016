"""Messages router -- threads, messages, read cursors, exports, notifications and coach contacts."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from msgguard.auth.models import Actor
from msgguard.engine import MessagingEngine
from web.backend.app.middleware.auth import get_current_actor, get_engine
from web.backend.app.models.api import (
    CoachContactRequestCreate,
    CoachContactRequestResponse,
    CoachContactRespondRequest,
    CreateThreadRequest,
    CreateThreadResponse,
    InboxItemResponse,
    InboxResponse,
    MarkReadRequest,
    MessageExportResponse,
    MessagePageResponse,
    NotificationsResponse,
    OkResponse,
    SendMessageRequest,
    SendMessageResponse,
)

router = APIRouter(prefix="/api/messages", tags=["messages"])


# ---------------------------------------------------------------------------
# Threads
# ---------------------------------------------------------------------------


@router.get("/threads", response_model=InboxResponse, summary="List the caller's threads")
async def list_threads(
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    items = await engine.messaging.inbox(actor)
    return InboxResponse(threads=[InboxItemResponse.model_validate(i) for i in items])


@router.post("/threads", response_model=CreateThreadResponse, summary="Open or reuse a thread")
async def create_thread(
    body: CreateThreadRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    handle = await engine.messaging.create_thread(
        actor,
        body.kind,
        student_id=body.student_id,
        coach_id=body.coach_id,
        coach_user_id=body.coach_user_id,
        group_id=body.group_id,
    )
    return CreateThreadResponse(thread_id=handle.thread.id, created=handle.created)


@router.get(
    "/threads/{thread_id}/messages",
    response_model=MessagePageResponse,
    summary="Page through a thread's messages",
)
async def list_messages(
    thread_id: str,
    before_id: Optional[int] = Query(None, gt=0),
    limit: int = Query(50, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    page = await engine.messaging.list_messages(actor, thread_id, before_id=before_id, limit=limit)
    return MessagePageResponse.model_validate(page)


@router.post(
    "/threads/{thread_id}/messages",
    response_model=SendMessageResponse,
    summary="Send a message",
)
async def send_message(
    thread_id: str,
    body: SendMessageRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    """Store a message after the access checks and the content guard.

    Returns 400 ``MESSAGE_CONTENT_BLOCKED`` when the workspace blocks the
    detected content on this kind of thread.
    """
    sent = await engine.messaging.send_message(actor, thread_id, body.body)
    return SendMessageResponse.model_validate(sent)


@router.post("/threads/{thread_id}/read", response_model=OkResponse, summary="Advance the read cursor")
async def mark_read(
    thread_id: str,
    body: MarkReadRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    await engine.messaging.mark_read(actor, thread_id, body.last_read_message_id)
    return OkResponse()


@router.post("/threads/{thread_id}/hide", response_model=OkResponse, summary="Hide a thread from the inbox")
async def hide_thread(
    thread_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    await engine.messaging.hide_thread(actor, thread_id)
    return OkResponse()


@router.get("/export", response_model=MessageExportResponse, summary="Export the caller's messages")
async def export_messages(
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    export = await engine.messaging.export_messages(actor)
    return MessageExportResponse.model_validate(export)


# ---------------------------------------------------------------------------
# Coach contacts
# ---------------------------------------------------------------------------


@router.post(
    "/coach-contacts/request",
    response_model=OkResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ask another coach to opt in to contact",
)
async def request_coach_contact(
    body: CoachContactRequestCreate,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    await engine.messaging.request_coach_contact(actor, body.email)
    return OkResponse()


@router.post(
    "/coach-contacts/respond",
    response_model=CoachContactRequestResponse,
    summary="Accept or reject a coach contact request",
)
async def respond_coach_contact(
    body: CoachContactRespondRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    request = await engine.messaging.respond_coach_contact(
        actor, body.request_id, accept=body.decision == "accept"
    )
    return CoachContactRequestResponse.model_validate(request)


@router.get(
    "/notifications",
    response_model=NotificationsResponse,
    summary="Unread counts and pending coach contact requests",
)
async def notifications(
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    result = await engine.messaging.notifications(actor)
    return NotificationsResponse.model_validate(result)
