from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.docvault.models import Base


class DocumentRecord(Base):
    __tablename__ = "vault_documents"
    __table_args__ = (
        Index("idx_vault_documents_owner", "owner_id", "created_at"),
        Index("idx_vault_documents_grantee", "grantee_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # uuid4 hex

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    grantee_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # Fixed at creation; re-sharing creates a new record.
    role: Mapped[str] = mapped_column(String(32), nullable=False)  # doctor, pharmacist, diagnostic
    permission: Mapped[str] = mapped_column(String(32), nullable=False)  # full, partial, read-only

    # NULL once soft-deleted and the ciphertext is released
    stored_blob_ref: Mapped[str | None] = mapped_column(String(512), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)  # sha256 of plaintext

    mime_category: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Active -> Inactive only
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "documentId": self.id,
            "ownerId": self.owner_id,
            "granteeId": self.grantee_id,
            "role": self.role,
            "permission": self.permission,
            "mimeCategory": self.mime_category,
            "fileName": self.file_name,
            "fileSize": self.size_bytes,
            "description": self.description,
            "active": self.active,
            "expiresAt": self.expires_at.isoformat() + "Z" if self.expires_at else None,
            "createdAt": self.created_at.isoformat() + "Z",
            "updatedAt": self.updated_at.isoformat() + "Z",
        }
