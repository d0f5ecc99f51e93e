"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- The anonymous session header (``X-Session-ID``) for session endpoints
- API Key security scheme (``X-API-Key``) for admin endpoints
- Health endpoints exempt from any security requirement

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from anonchat.core.config import settings


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Operator API key for administrative endpoints.",
            },
        )
        security_schemes.setdefault(
            "AnonymousSession",
            {
                "type": "apiKey",
                "in": "header",
                "name": settings.session.header_name,
                "description": (
                    "Anonymous session id. The "
                    f"`{settings.session.cookie_name}` cookie is accepted as well."
                ),
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Sessions",
                "description": "Anonymous session bootstrap, quota and merge.",
            },
            {
                "name": "Admin",
                "description": "Operator overrides. Requires X-API-Key.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        paths = schema.get("paths", {})
        for path, methods in paths.items():
            if "/health" in path:
                requirement: list = []
            elif "/admin/" in path:
                requirement = [{"ApiKeyAuth": []}]
            else:
                # Session id is optional: bootstrap works without one
                requirement = [{"AnonymousSession": []}, {}]
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = requirement

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
