from __future__ import annotations

from anonchat.api.routes.admin import router as admin_router
from anonchat.api.routes.health import router as health_router
from anonchat.api.routes.session import router as session_router

__all__ = ["admin_router", "health_router", "session_router"]
