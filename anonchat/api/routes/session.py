from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query, Response

from anonchat.core.config import settings
from anonchat.core.dependencies import get_client_identity, get_request_gate
from anonchat.core.identity import ClientIdentity
from anonchat.schemas.session import (
    CreateSessionRequest,
    DeleteSessionResponse,
    IncrementRequest,
    SessionResponse,
    UpdateMessageCountRequest,
)
from anonchat.services.request_gate import RequestGate

router = APIRouter(prefix="/session", tags=["Sessions"])


def _remember_session(response: Response, result: SessionResponse) -> None:
    if result.session_data is None:
        return
    response.set_cookie(
        settings.session.cookie_name,
        result.session_data.session_id,
        max_age=settings.session.ttl_seconds,
        httponly=True,
        samesite="lax",
    )


@router.get(
    "",
    response_model=SessionResponse,
    response_model_by_alias=True,
)
async def get_session(
    response: Response,
    session_id: str | None = Query(default=None, alias="sessionId"),
    identity: ClientIdentity = Depends(get_client_identity),
    gate: RequestGate = Depends(get_request_gate),
) -> SessionResponse:
    """Fetch a session by id, or bootstrap one for the caller.

    With ``?sessionId=`` the session must exist (404 otherwise). Without it,
    the caller's IP-bound session is returned or created, subject to the
    per-IP bootstrap limits.
    """
    if session_id:
        return await gate.fetch(session_id)

    result = await gate.bootstrap(identity)
    _remember_session(response, result)
    return result


@router.post(
    "",
    response_model=SessionResponse,
    response_model_by_alias=True,
)
async def create_or_merge_session(
    response: Response,
    payload: CreateSessionRequest | None = Body(default=None),
    identity: ClientIdentity = Depends(get_client_identity),
    gate: RequestGate = Depends(get_request_gate),
) -> SessionResponse:
    """Get-or-create a session, or merge two sessions when ``action`` is ``merge``."""
    payload = payload or CreateSessionRequest()
    if payload.action == "merge":
        result = await gate.merge(payload.from_session_id, payload.to_session_id)
    else:
        result = await gate.bootstrap(identity, payload.session_id)
    _remember_session(response, result)
    return result


@router.patch(
    "",
    response_model=SessionResponse,
    response_model_by_alias=True,
)
async def increment_message_count(
    payload: IncrementRequest | None = Body(default=None),
    identity: ClientIdentity = Depends(get_client_identity),
    gate: RequestGate = Depends(get_request_gate),
) -> SessionResponse:
    """Record one message against the session's limits and daily quota."""
    session_id = (payload.session_id if payload else None) or identity.session_id
    return await gate.record_message(identity, session_id)


@router.put(
    "",
    response_model=SessionResponse,
    response_model_by_alias=True,
)
async def update_message_count(
    payload: UpdateMessageCountRequest | None = Body(default=None),
    gate: RequestGate = Depends(get_request_gate),
) -> SessionResponse:
    """Overwrite the message count (client resynchronisation)."""
    payload = payload or UpdateMessageCountRequest()
    return await gate.update_message_count(payload.session_id, payload.message_count)


@router.delete(
    "",
    response_model=DeleteSessionResponse,
    response_model_by_alias=True,
)
async def delete_session(
    response: Response,
    session_id: str | None = Query(default=None, alias="sessionId"),
    identity: ClientIdentity = Depends(get_client_identity),
    gate: RequestGate = Depends(get_request_gate),
) -> DeleteSessionResponse:
    result = await gate.delete(session_id or identity.session_id)
    response.delete_cookie(settings.session.cookie_name)
    return result
