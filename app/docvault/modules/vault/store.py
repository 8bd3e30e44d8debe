from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from app.docvault.constants import OPS_LOGGER_NAME
from app.docvault.db import session_scope
from app.docvault.errors import AuthorizationError, NotFoundError
from app.docvault.modules.vault.models import DocumentRecord
from app.docvault.storage import Storage, StorageError

logger = logging.getLogger(__name__)


def blob_key_for(document_id: str) -> str:
    return f"vault/{document_id[:2]}/{document_id}.blob"


class VaultStore:
    """
    Document metadata plus the ciphertext blobs it points at.

    Each call runs in its own short transaction so a soft delete is visible to
    every subsequent read as soon as it commits.
    """

    def __init__(self, sessions: sessionmaker[Session], storage: Storage) -> None:
        self._sessions = sessions
        self.storage = storage

    def put_blob(self, document_id: str, blob: bytes) -> str:
        key = blob_key_for(document_id)
        self.storage.put_bytes(key, blob, content_type="application/octet-stream")
        return key

    def read_blob(self, record: DocumentRecord) -> bytes:
        if not record.stored_blob_ref:
            raise StorageError(f"document {record.id} has no stored blob", retryable=False)
        return self.storage.get_bytes(record.stored_blob_ref)

    def discard_blob(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except StorageError:
            logger.exception("Failed to discard blob %s", key)

    def create(self, record: DocumentRecord) -> DocumentRecord:
        with session_scope(self._sessions) as s:
            s.add(record)
        return record

    def get(self, document_id: str) -> DocumentRecord | None:
        if not document_id:
            return None
        with session_scope(self._sessions) as s:
            return s.get(DocumentRecord, document_id)

    def list_by_owner(self, owner_id: str, *, include_inactive: bool = False) -> list[DocumentRecord]:
        stmt = select(DocumentRecord).where(DocumentRecord.owner_id == owner_id)
        if not include_inactive:
            stmt = stmt.where(DocumentRecord.active.is_(True))
        stmt = stmt.order_by(DocumentRecord.created_at.desc(), DocumentRecord.id.desc())
        with session_scope(self._sessions) as s:
            return list(s.scalars(stmt).all())

    def list_by_grantee(self, grantee_id: str, *, include_inactive: bool = False) -> list[DocumentRecord]:
        stmt = select(DocumentRecord).where(DocumentRecord.grantee_id == grantee_id)
        if not include_inactive:
            stmt = stmt.where(DocumentRecord.active.is_(True))
        stmt = stmt.order_by(DocumentRecord.created_at.desc(), DocumentRecord.id.desc())
        with session_scope(self._sessions) as s:
            return list(s.scalars(stmt).all())

    def soft_delete(self, document_id: str, requester_owner_id: str, *, now: datetime | None = None) -> DocumentRecord:
        """
        Active -> Inactive. The flag flips in one conditional UPDATE and commits
        before the ciphertext is removed, so no fetch that starts afterwards can
        pass the activity check. The metadata row is kept for the audit trail.
        """
        now = now or datetime.utcnow()
        with session_scope(self._sessions) as s:
            record = s.get(DocumentRecord, document_id)
            if record is None:
                raise NotFoundError(f"document {document_id} not found")
            if record.owner_id != requester_owner_id:
                raise AuthorizationError(f"principal {requester_owner_id!r} does not own document {document_id}")
            blob_key = record.stored_blob_ref
            result = s.execute(
                update(DocumentRecord)
                .where(DocumentRecord.id == document_id, DocumentRecord.active.is_(True))
                .values(active=False, updated_at=now)
            )
            flipped = result.rowcount == 1

        if flipped:
            logger.info("Document %s deactivated by owner %s", document_id, requester_owner_id)
        if blob_key:
            try:
                self.storage.delete(blob_key)
            except StorageError:
                # Record is already inactive; the orphaned blob is unreachable.
                logging.getLogger(OPS_LOGGER_NAME).error(
                    "Blob release failed after soft delete (document=%s key=%s)",
                    document_id,
                    blob_key,
                    extra={"alert": True},
                )
            else:
                with session_scope(self._sessions) as s:
                    s.execute(
                        update(DocumentRecord)
                        .where(DocumentRecord.id == document_id)
                        .values(stored_blob_ref=None)
                    )
        return self.get(document_id)  # type: ignore[return-value]
