"""
auth/audit.py -- Audit Log: append-only record of security-relevant events.

Writes are fire-and-forget from the caller's point of view. A failing sink
is logged at ERROR and swallowed so an audit outage never blocks a login,
refresh or logout. Entries are never updated or deleted here; retention is
an external concern.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from auth.errors import StoreError
from auth.models import AuditAction, AuditLogEntry
from auth.protocols import AuditSink

logger = logging.getLogger("novasanctum.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog:
    def __init__(self, sink: AuditSink, clock: Callable[[], datetime] = _utcnow) -> None:
        self._sink = sink
        self._clock = clock

    def record(
        self,
        action: AuditAction | str,
        *,
        user_id: int | None = None,
        resource: str = "AUTH",
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Append one entry. Returns it, or None if the sink failed."""
        entry = AuditLogEntry(
            action=action.value if isinstance(action, AuditAction) else action,
            timestamp=self._clock(),
            resource=resource,
            user_id=user_id,
            ip_address=ip_address or "unknown",
            user_agent=user_agent or "unknown",
            details=dict(details or {}),
        )
        try:
            self._sink.append(entry)
        except StoreError:
            logger.error("Audit write failed for action=%s user_id=%s", entry.action, user_id)
            return None
        return entry

    def count_since(self, action: AuditAction | str, since: datetime) -> int:
        name = action.value if isinstance(action, AuditAction) else action
        return self._sink.count_since(name, since)
