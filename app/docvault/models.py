from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class AccessLogEntry(Base):
    """
    Append-only record of a single access attempt against a vault document.

    No foreign key to vault_documents: entries outlive soft deletes and can be
    written for a document id that no longer resolves. ``id`` doubles as the
    per-process-independent ordering sequence.
    """

    __tablename__ = "vault_access_log"
    __table_args__ = (
        Index("idx_access_log_document", "document_id", "id"),
        Index("idx_access_log_owner", "owner_id", "id"),
        Index("idx_access_log_grantee", "grantee_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    document_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    grantee_id: Mapped[str] = mapped_column(String(128), nullable=False)

    access_type: Mapped[str] = mapped_column(String(16), nullable=False)  # redeem, view, download
    method: Mapped[str] = mapped_column(String(16), nullable=False)  # payload, direct, api
    action: Mapped[str | None] = mapped_column(String(32), nullable=True)  # requested action, e.g. "prescribe"

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_kind: Mapped[str | None] = mapped_column(String(64), nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "sequence": self.id,
            "documentId": self.document_id,
            "ownerId": self.owner_id,
            "granteeId": self.grantee_id,
            "accessType": self.access_type,
            "method": self.method,
            "action": self.action,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "requestId": self.request_id,
            "success": self.success,
            "errorKind": self.error_kind,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp.isoformat() + "Z",
        }


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
import app.docvault.modules.vault.models  # noqa: E402,F401
