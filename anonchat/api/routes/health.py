from __future__ import annotations

from fastapi import APIRouter, Depends

from anonchat.adapters.store.base import AbstractKeyValueStore
from anonchat.core.dependencies import get_store

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns a simple status response to verify the API process is up.
    Used by load balancers and monitoring systems.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(store: AbstractKeyValueStore = Depends(get_store)) -> dict:
    """Readiness check: the shared store answers a ping.

    A store outage surfaces as 503 through the global exception handlers.
    """

    await store.ping()
    return {"status": "ready"}
