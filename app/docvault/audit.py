from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.docvault.constants import ACCESS_METHODS, ACCESS_TYPES, OPS_LOGGER_NAME
from app.docvault.db import session_scope
from app.docvault.models import AccessLogEntry

logger = logging.getLogger(__name__)
ops_logger = logging.getLogger(OPS_LOGGER_NAME)


@dataclass(frozen=True)
class AccessAttempt:
    document_id: str
    owner_id: str
    grantee_id: str
    access_type: str
    method: str
    success: bool
    timestamp: datetime
    action: str | None = None
    error_kind: str | None = None
    duration_ms: int = 0
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


class AccessAuditLog:
    """
    Append-only access log.

    ``append`` is the only mutator and commits in its own transaction, so a
    failing operation never rolls back its own audit entry. Reads order by
    ``(timestamp, id)``: the high-water clamp only holds within one process, and
    several workers may commit their entries out of timestamp order.
    """

    def __init__(self, sessions: sessionmaker[Session]) -> None:
        self._sessions = sessions
        self._lock = threading.Lock()
        self._high_water: datetime | None = None
        self.failed_appends = 0

    def append(self, attempt: AccessAttempt) -> bool:
        """Best-effort write. Returns False (and alerts) instead of raising."""
        if attempt.access_type not in ACCESS_TYPES or attempt.method not in ACCESS_METHODS:
            raise ValueError(f"unknown access type/method: {attempt.access_type}/{attempt.method}")
        try:
            # Timestamps never run backwards relative to the sequence within a process.
            with self._lock:
                ts = attempt.timestamp
                if self._high_water is not None and ts < self._high_water:
                    ts = self._high_water
                self._high_water = ts
                with session_scope(self._sessions) as s:
                    s.add(self._entry_for(attempt, ts))
        except SQLAlchemyError:
            with self._lock:
                self.failed_appends += 1
            ops_logger.exception(
                "Access log append failed (document=%s grantee=%s type=%s success=%s request_id=%s)",
                attempt.document_id,
                attempt.grantee_id,
                attempt.access_type,
                attempt.success,
                attempt.request_id,
                extra={"alert": True},
            )
            return False
        logger.debug(
            "Access logged: document=%s grantee=%s type=%s success=%s",
            attempt.document_id,
            attempt.grantee_id,
            attempt.access_type,
            attempt.success,
        )
        return True

    @staticmethod
    def _entry_for(attempt: AccessAttempt, timestamp: datetime) -> AccessLogEntry:
        return AccessLogEntry(
            document_id=attempt.document_id,
            owner_id=attempt.owner_id,
            grantee_id=attempt.grantee_id,
            access_type=attempt.access_type,
            method=attempt.method,
            action=attempt.action,
            ip_address=(attempt.ip_address or None),
            user_agent=(attempt.user_agent or "")[:512] or None,
            request_id=attempt.request_id,
            success=attempt.success,
            error_kind=attempt.error_kind,
            duration_ms=max(0, int(attempt.duration_ms)),
            timestamp=timestamp,
        )

    def query(
        self,
        *,
        document_id: str | None = None,
        grantee_id: str | None = None,
        owner_id: str | None = None,
        limit: int | None = None,
    ) -> list[AccessLogEntry]:
        """Entries newest first."""
        stmt = select(AccessLogEntry)
        if document_id is not None:
            stmt = stmt.where(AccessLogEntry.document_id == document_id)
        if grantee_id is not None:
            stmt = stmt.where(AccessLogEntry.grantee_id == grantee_id)
        if owner_id is not None:
            stmt = stmt.where(AccessLogEntry.owner_id == owner_id)
        stmt = stmt.order_by(AccessLogEntry.timestamp.desc(), AccessLogEntry.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        with session_scope(self._sessions) as s:
            return list(s.scalars(stmt).all())
