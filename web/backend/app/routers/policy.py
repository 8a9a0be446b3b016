"""Policy router -- workspace messaging policy and charter acceptance.

These endpoints are charter-exempt: a user must be able to read and accept
the charter before the charter gate lets them message.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from msgguard.auth.models import Actor
from msgguard.engine import MessagingEngine
from msgguard.policies.models import PolicyUpdate
from web.backend.app.middleware.auth import get_current_actor, get_engine
from web.backend.app.models.api import (
    AcceptCharterRequest,
    CharterStatusResponse,
    PolicyResponse,
    PolicyUpdateRequest,
)

router = APIRouter(prefix="/api/messages", tags=["policy"])


@router.get("/policy", response_model=PolicyResponse, summary="Read the workspace messaging policy")
async def get_policy(
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    return PolicyResponse.model_validate(await engine.moderation.get_policy(actor))


@router.patch("/policy", response_model=PolicyResponse, summary="Update the workspace messaging policy")
async def update_policy(
    body: PolicyUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    update = PolicyUpdate(**body.model_dump())
    return PolicyResponse.model_validate(await engine.moderation.update_policy(actor, update))


@router.get("/charter", response_model=CharterStatusResponse, summary="Charter status for the caller")
async def charter_status(
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    return CharterStatusResponse.model_validate(await engine.moderation.charter_status(actor))


@router.post("/charter", response_model=CharterStatusResponse, summary="Accept the current charter")
async def accept_charter(
    body: AcceptCharterRequest,
    actor: Actor = Depends(get_current_actor),
    engine: MessagingEngine = Depends(get_engine),
):
    status = await engine.moderation.accept_charter(actor, body.charter_version)
    return CharterStatusResponse.model_validate(status)
