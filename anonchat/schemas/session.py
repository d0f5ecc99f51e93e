"""Pydantic schemas for anonymous sessions and the session API."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class TrustLevel(str, Enum):
    """Coarse trust classification of an anonymous identity.

    NONE means no usable identity and is denied by default.
    """

    NONE = "NONE"
    NEW = "NEW"
    LOW = "LOW"
    AUTHENTICATED = "AUTHENTICATED"


class CamelModel(BaseModel):
    """Base model serialising to the camelCase field names clients expect."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class AnonymousSession(CamelModel):
    """Anonymous session record.

    Stored as a flat string record under ``session:{session_id}``.
    """

    session_id: str = Field(..., description="Opaque identifier, immutable once assigned.")
    ip_hash: str = Field(..., description="One-way hash of the originating IP.")
    user_agent_hash: str | None = Field(
        default=None,
        description="User agent fingerprint, used only for abuse heuristics.",
    )
    created_at: int = Field(..., description="Creation time, epoch milliseconds.")
    last_active_at: int = Field(..., description="Last activity time, epoch milliseconds.")
    expires_at: int = Field(
        ...,
        description="End of the fixed quota period (created_at + TTL), epoch milliseconds.",
    )
    message_count: int = Field(0, ge=0, description="Messages consumed in the current period.")
    daily_message_limit: int = Field(10, ge=0, description="Message ceiling for the period.")
    trust_level: TrustLevel = Field(TrustLevel.NEW, description="Trust classification.")

    @computed_field(alias="remainingMessages")  # type: ignore[prop-decorator]
    @property
    def remaining_messages(self) -> int:
        return max(0, self.daily_message_limit - self.message_count)

    def is_expired(self, now_ms: int) -> bool:
        """Fixed-window expiry: true once ``now`` passes ``expires_at``."""
        return now_ms > self.expires_at

    def to_record(self) -> dict[str, str]:
        record = {
            "sessionId": self.session_id,
            "ipHash": self.ip_hash,
            "createdAt": str(self.created_at),
            "lastActiveAt": str(self.last_active_at),
            "expiresAt": str(self.expires_at),
            "messageCount": str(self.message_count),
            "dailyMessageLimit": str(self.daily_message_limit),
            "trustLevel": self.trust_level.value,
        }
        if self.user_agent_hash:
            record["userAgentHash"] = self.user_agent_hash
        return record

    @classmethod
    def from_record(cls, record: dict[str, str]) -> "AnonymousSession":
        return cls(
            session_id=record["sessionId"],
            ip_hash=record["ipHash"],
            user_agent_hash=record.get("userAgentHash") or None,
            created_at=int(record["createdAt"]),
            last_active_at=int(record["lastActiveAt"]),
            expires_at=int(record["expiresAt"]),
            message_count=int(record.get("messageCount", "0")),
            daily_message_limit=int(record.get("dailyMessageLimit", "0")),
            trust_level=TrustLevel(record.get("trustLevel", TrustLevel.NEW.value)),
        )


class SessionResponse(CamelModel):
    """Envelope returned by every successful session endpoint."""

    success: bool = True
    session_data: AnonymousSession | None = Field(
        default=None,
        description="Session payload; null only when admitted in degraded mode.",
    )
    degraded: bool = Field(
        default=False,
        description="True when limits could not be verified against the shared store.",
    )


class DeleteSessionResponse(CamelModel):
    success: bool = True
    message: str = "Session deleted"


class CreateSessionRequest(CamelModel):
    """POST body: get-or-create, or merge when ``action == "merge"``."""

    action: Literal["create", "merge"] = "create"
    session_id: str | None = None
    from_session_id: str | None = None
    to_session_id: str | None = None


class IncrementRequest(CamelModel):
    session_id: str | None = None


class UpdateMessageCountRequest(CamelModel):
    session_id: str | None = None
    message_count: int | None = None


class RateLimitResetResponse(CamelModel):
    success: bool = True
    removed: int = Field(..., description="Number of window keys that existed.")
