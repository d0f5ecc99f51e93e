from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from anonchat.core.auth import verify_api_key
from anonchat.core.dependencies import get_request_gate
from anonchat.schemas.session import RateLimitResetResponse
from anonchat.services.request_gate import RequestGate

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(verify_api_key)])


@router.delete(
    "/rate-limits/{scope_id}",
    response_model=RateLimitResetResponse,
)
async def reset_rate_limits(
    scope_id: str,
    window: str | None = Query(default=None, description="Window name; omit to clear all windows"),
    gate: RequestGate = Depends(get_request_gate),
) -> RateLimitResetResponse:
    """Clear sliding-window state for a session id or IP hash.

    Intended for operators unblocking a client after a false positive.
    """
    return await gate.reset_rate_limits(scope_id, window)
