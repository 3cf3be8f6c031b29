"""Sync endpoints: push local changes, pull remote changes."""

import asyncio
import re
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from devcontext.server.auth import get_current_user
from devcontext.server.db import ServerStore
from devcontext.server.rate_limit import PULL_RATE_LIMIT, PUSH_RATE_LIMIT, limiter
from devcontext.server.schemas import PullResponse, PushRequest, PushResponse

router = APIRouter(tags=["sync"])

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_since(value: Optional[str]) -> int:
    """Parse the ``since`` query value.

    Leading digits are honoured ("12abc" is 12); anything unparsable or
    negative becomes 0.
    """
    if not value:
        return 0
    match = _LEADING_INT.match(value)
    if not match:
        return 0
    return max(0, int(match.group(1)))


def _store(request: Request) -> ServerStore:
    return request.app.state.store


@router.post(
    "/push",
    response_model=PushResponse,
    responses={
        400: {"description": "Invalid payload or project references"},
        401: {"description": "Missing or invalid token"},
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.limit(PUSH_RATE_LIMIT)
async def push_changes(
    request: Request,
    payload: PushRequest,
    user: dict[str, Any] = Depends(get_current_user),
):
    """Apply a batch of client changes for the authenticated user."""
    store = _store(request)
    try:
        outcome = await asyncio.to_thread(
            store.apply_push, user["id"], payload.device_id, payload.changes.as_rows()
        )
    except Exception as e:
        logger.exception(f"Push failed for {user['id']}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Sync failed")

    if outcome.has_rejections:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Invalid project references",
                "invalidProjectIds": outcome.invalid_project_ids,
                "rejectedIds": outcome.rejected,
                "syncVersion": outcome.sync_version,
            },
        )
    return {"success": True, "syncVersion": outcome.sync_version}


@router.get(
    "/pull",
    response_model=PullResponse,
    response_model_by_alias=True,
    responses={
        401: {"description": "Missing or invalid token"},
        404: {"description": "Project not found"},
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.limit(PULL_RATE_LIMIT)
async def pull_changes(
    request: Request,
    since: Optional[str] = Query(None, description="Last sync version seen by the client"),
    project_id: Optional[str] = Query(None, alias="projectId", max_length=50),
    device_id: Optional[str] = Query(None, alias="deviceId", max_length=100),
    user: dict[str, Any] = Depends(get_current_user),
):
    """Return every change newer than ``since`` for the authenticated user."""
    store = _store(request)
    since_version = parse_since(since)

    if project_id:
        owned = await asyncio.to_thread(store.owns_project, user["id"], project_id)
        if not owned:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    try:
        changes = await asyncio.to_thread(
            store.changes_since, user["id"], since_version, project_id, device_id
        )
    except Exception as e:
        logger.exception(f"Pull failed for {user['id']}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Sync failed")

    logger.debug(
        f"Pull for {user['id']} since {since_version}: "
        f"{len(changes['projects'])} projects, {len(changes['snippets'])} snippets, "
        f"{len(changes['knowledge'])} knowledge"
    )
    response = PullResponse.model_validate(
        {
            "sync_version": changes["sync_version"],
            "changes": {
                "projects": changes["projects"],
                "snippets": changes["snippets"],
                "knowledge": changes["knowledge"],
            },
        }
    )
    return response.model_dump(by_alias=True)
