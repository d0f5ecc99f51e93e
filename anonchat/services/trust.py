"""Trust classification and trust-scaled limiter thresholds.

``TrustEvaluator.evaluate`` is a pure function of the signals it is given.
What each level means for rate limiting lives in a ``TrustPolicyTable``
built from configuration, so thresholds are looked up, not branched on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from anonchat.adapters.rate_limit.base import WindowPolicy
from anonchat.core.config import RateLimitSettings
from anonchat.schemas.session import TrustLevel

logger = logging.getLogger(__name__)

# Higher rank wins when two identities are reconciled
TRUST_RANK: dict[TrustLevel, int] = {
    TrustLevel.NONE: 0,
    TrustLevel.NEW: 1,
    TrustLevel.LOW: 2,
    TrustLevel.AUTHENTICATED: 3,
}


def higher_trust(a: TrustLevel, b: TrustLevel) -> TrustLevel:
    """Return the higher of two trust levels (AUTHENTICATED > LOW > NEW > NONE)."""
    return a if TRUST_RANK[a] >= TRUST_RANK[b] else b


@dataclass(frozen=True)
class VelocitySignals:
    """Recent-activity signals available when classifying an identity.

    Attributes:
        authenticated: The upstream identity provider vouched for the caller.
        recent_sessions_from_ip: Sessions bootstrapped from the same IP hash
            inside the bootstrap window.
    """

    authenticated: bool = False
    recent_sessions_from_ip: int = 0


@dataclass(frozen=True)
class TrustPolicy:
    """What a trust level grants.

    An empty ``windows`` mapping with ``denied`` set means requests at this
    level are refused before any limiter is consulted.
    """

    daily_message_limit: int
    windows: dict[str, WindowPolicy] = field(default_factory=dict)
    denied: bool = False


class TrustPolicyTable:
    """Lookup table from trust level to limiter thresholds and quota."""

    def __init__(self, policies: Mapping[TrustLevel, TrustPolicy]) -> None:
        missing = [level.value for level in TrustLevel if level not in policies]
        if missing:
            raise ValueError(f"trust policies missing for: {', '.join(missing)}")
        self._policies = dict(policies)

    def __getitem__(self, level: TrustLevel) -> TrustPolicy:
        return self._policies[level]

    def window(self, level: TrustLevel, name: str) -> WindowPolicy | None:
        return self._policies[level].windows.get(name)

    @classmethod
    def from_config(cls, raw: Mapping[str, Mapping[str, Any]]) -> "TrustPolicyTable":
        """Build the table from ``RATE_LIMIT_TRUST_POLICIES``-shaped data.

        Example:
            >>> table = TrustPolicyTable.from_config({
            ...     "NEW": {"daily_message_limit": 10, "windows": {"burst": {"limit": 5, "window_ms": 60000}}},
            ...     "LOW": {"daily_message_limit": 5},
            ...     "AUTHENTICATED": {"daily_message_limit": 1000},
            ...     "NONE": {"daily_message_limit": 0},
            ... })
            >>> table[TrustLevel.NONE].denied
            True
        """
        policies: dict[TrustLevel, TrustPolicy] = {}
        for name, entry in raw.items():
            level = TrustLevel(name.upper())
            windows = {
                window_name: WindowPolicy(limit=int(w["limit"]), window_ms=int(w["window_ms"]))
                for window_name, w in (entry.get("windows") or {}).items()
            }
            policies[level] = TrustPolicy(
                daily_message_limit=int(entry.get("daily_message_limit", 0)),
                windows=windows,
                denied=bool(entry.get("denied", level is TrustLevel.NONE)),
            )
        return cls(policies)


class TrustEvaluator:
    """Derive a coarse trust level from identity and velocity signals.

    Rules, first match wins:
    - authenticated caller -> AUTHENTICATED
    - no usable IP hash -> NONE
    - IP bootstrapped too many sessions recently -> LOW
    - user agent required but missing -> LOW
    - otherwise -> NEW
    """

    def __init__(self, *, max_sessions_per_ip: int = 5, require_user_agent: bool = False) -> None:
        if max_sessions_per_ip < 1:
            raise ValueError("max_sessions_per_ip must be >= 1")
        self._max_sessions_per_ip = max_sessions_per_ip
        self._require_user_agent = require_user_agent

    @classmethod
    def from_settings(cls, cfg: RateLimitSettings) -> "TrustEvaluator":
        return cls(
            max_sessions_per_ip=cfg.max_sessions_per_ip,
            require_user_agent=cfg.require_user_agent,
        )

    def evaluate(
        self,
        ip_hash: str | None,
        user_agent_hash: str | None = None,
        signals: VelocitySignals | None = None,
    ) -> TrustLevel:
        signals = signals or VelocitySignals()

        if signals.authenticated:
            return TrustLevel.AUTHENTICATED
        if not ip_hash:
            return TrustLevel.NONE
        if signals.recent_sessions_from_ip >= self._max_sessions_per_ip:
            logger.info(
                "trust.downgraded",
                extra={
                    "reason": "ip_velocity",
                    "recent_sessions": signals.recent_sessions_from_ip,
                    "threshold": self._max_sessions_per_ip,
                },
            )
            return TrustLevel.LOW
        if self._require_user_agent and not user_agent_hash:
            logger.info("trust.downgraded", extra={"reason": "missing_user_agent"})
            return TrustLevel.LOW
        return TrustLevel.NEW
