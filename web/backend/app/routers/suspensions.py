"""Suspensions router -- list, apply and lift messaging suspensions."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from msgguard.auth.models import Actor
from msgguard.engine import MessagingEngine
from web.backend.app.middleware.auth import get_current_actor, get_engine
from web.backend.app.models.api import (
    ManageSuspensionRequest,
    SuspensionResponse,
    SuspensionsResponse,
)

router = APIRouter(prefix="/api/messages", tags=["suspensions"])


def _suspensions_response(rows) -> SuspensionsResponse:
    return SuspensionsResponse(suspensions=[SuspensionResponse.model_validate(s) for s in rows])


@router.get("/suspensions", response_model=SuspensionsResponse, summary="Active suspensions")
async def list_suspensions(
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    return _suspensions_response(await engine.moderation.list_suspensions(actor))


@router.post("/suspensions", response_model=SuspensionsResponse, summary="Suspend or lift a user")
async def manage_suspension(
    body: ManageSuspensionRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    if body.action == "lift":
        rows = await engine.moderation.lift_suspension(actor, body.user_id)
    else:
        rows = await engine.moderation.suspend_user(
            actor, body.user_id, body.reason, suspended_until=body.suspended_until
        )
    return _suspensions_response(rows)
