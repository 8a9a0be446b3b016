"""Identity dependencies.

Authentication happens upstream: a gateway in front of this service verifies
the session and forwards the caller's id in the ``X-User-Id`` header.  These
dependencies resolve that id into an :class:`~msgguard.auth.models.Actor`
(role and active workspace) using the workspace directory.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from msgguard.auth.models import Actor
from msgguard.engine import MessagingEngine
from msgguard.errors import Unauthorized


def get_engine(request: Request) -> MessagingEngine:
    """Return the engine opened by the application lifespan."""
    return request.app.state.engine


async def get_current_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    engine: MessagingEngine = Depends(get_engine),
) -> Actor:
    """Resolve the caller; 401 without identity, 403 outside any workspace."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Not authenticated")
    return await engine.orgs.resolve_actor(x_user_id.strip())
