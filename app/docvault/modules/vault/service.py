"""
Vault orchestrator.

Composes the cipher engine, token service, payload codec, vault store and
access log into the public operations. Every authenticated access walks the
same sequence:

    1. unwrap / verify token   -> TokenError (logged when a document is known)
    2. load record             -> NotFoundError
    3. record must be active   -> InactiveError
    4. role table allows action -> AuthorizationError
    5. perform the action (decrypt + integrity check for content)
    6. append one access log entry
    7. return

Token checks come first so invalid tokens learn nothing about which documents
exist. Errors never leave this module as exceptions; callers get a VaultResult.
"""
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from werkzeug.utils import secure_filename

from app.docvault.audit import AccessAttempt, AccessAuditLog
from app.docvault.constants import (
    ACCESS_METHODS,
    CATEGORY_CONTENT_TYPES,
    DEFAULT_LOG_LIMIT,
    MAX_LOG_LIMIT,
    MAX_TTL_MINUTES,
    OPS_LOGGER_NAME,
    TTL_PRESETS,
)
from app.docvault.errors import (
    AuthenticationFailure,
    AuthorizationError,
    InactiveError,
    IntegrityMismatch,
    NotFoundError,
    TokenError,
    ValidationError,
    VaultError,
)
from app.docvault.models import AccessLogEntry
from app.docvault.modules.vault.cipher import CipherEngine
from app.docvault.modules.vault.models import DocumentRecord
from app.docvault.modules.vault.payload import (
    ROLE_TABLE,
    PayloadCodec,
    is_action_allowed,
    permission_for_role,
    role_catalog,
)
from app.docvault.modules.vault.store import VaultStore
from app.docvault.modules.vault.tokens import ShareClaims, TokenService
from app.docvault.storage import BlobMissing, StorageError

logger = logging.getLogger(__name__)
ops_logger = logging.getLogger(OPS_LOGGER_NAME)

T = TypeVar("T")


@dataclass(frozen=True)
class VaultResult(Generic[T]):
    ok: bool
    value: T | None = None
    error_kind: str | None = None
    status: int = 200
    message: str | None = None

    @classmethod
    def success(cls, value: T | None = None, status: int = 200) -> "VaultResult[T]":
        return cls(ok=True, value=value, status=status)

    @classmethod
    def failure(cls, kind: str, status: int, message: str | None = None) -> "VaultResult[T]":
        return cls(ok=False, error_kind=kind, status=status, message=message)


@dataclass(frozen=True)
class RequestContext:
    """Network/agent identifiers of the caller, recorded in the access log."""

    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    method: str | None = None


@dataclass(frozen=True)
class UploadReceipt:
    document_id: str
    share_payload: str
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class DocumentSummary:
    document_id: str
    file_name: str
    mime_category: str
    role: str
    permission: str
    description: str
    size_bytes: int
    created_at: datetime
    expires_at: datetime
    token: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentId": self.document_id,
            "fileName": self.file_name,
            "mimeCategory": self.mime_category,
            "role": self.role,
            "permission": self.permission,
            "description": self.description,
            "fileSize": self.size_bytes,
            "createdAt": self.created_at.isoformat() + "Z",
            "expiresAt": self.expires_at.isoformat() + "Z",
            "token": self.token,
        }


@dataclass(frozen=True)
class DocumentContent:
    document_id: str
    data: bytes = field(repr=False)
    content_type: str
    file_name: str


def utc_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def classify_mime_category(content_type: str | None, file_name: str | None) -> str:
    """
    Map an upload to a document category. Keywords in the file name win over
    the content type, so "lab_report.pdf" is a lab report rather than a pdf.
    """
    name = (file_name or "").lower()
    ctype = (content_type or "").lower()
    if "prescription" in name:
        return "prescription"
    if "lab" in name or "report" in name:
        return "lab-report"
    if "xray" in name or "x-ray" in name:
        return "xray"
    if ctype == "application/pdf" or name.endswith(".pdf"):
        return "pdf"
    if ctype.startswith("image/"):
        return "image"
    return "other"


class VaultService:
    def __init__(
        self,
        *,
        cipher: CipherEngine,
        tokens: TokenService,
        codec: PayloadCodec,
        store: VaultStore,
        audit_log: AccessAuditLog,
        max_upload_bytes: int = 10 * 1024 * 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cipher = cipher
        self.tokens = tokens
        self.codec = codec
        self.store = store
        self.audit_log = audit_log
        self.max_upload_bytes = max_upload_bytes
        self._clock = clock

    # ------------------------------------------------------------------ boundary

    def _guard(self, operation: str, fn: Callable[[], T], *, status: int = 200) -> VaultResult[T]:
        try:
            return VaultResult.success(fn(), status=status)
        except VaultError as e:
            if e.status >= 500:
                logger.error("%s failed: %s (%s)", operation, e.log_kind, e)
            else:
                logger.info("%s rejected: %s (%s)", operation, e.log_kind, e)
            # Only input problems are echoed back; everything else stays in the logs.
            message = str(e) if isinstance(e, ValidationError) else None
            return VaultResult.failure(e.kind, e.status, message)
        except StorageError as e:
            logger.error("%s storage failure (retryable=%s): %s", operation, e.retryable, e)
            return VaultResult.failure(e.kind, e.status)
        except Exception:
            logger.exception("%s crashed", operation)
            return VaultResult.failure("internal", 500)

    def _now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------ upload

    def upload(
        self,
        owner_id: str,
        plaintext: bytes,
        grantee_id: str,
        role: str,
        permission: str | None,
        description: str | None,
        ttl_minutes: int | str | None,
        *,
        file_name: str | None = None,
        content_type: str | None = None,
    ) -> VaultResult[UploadReceipt]:
        return self._guard(
            "upload",
            lambda: self._upload(
                owner_id, plaintext, grantee_id, role, permission, description, ttl_minutes, file_name, content_type
            ),
            status=201,
        )

    def _upload(
        self,
        owner_id: str,
        plaintext: bytes,
        grantee_id: str,
        role: str,
        permission: str | None,
        description: str | None,
        ttl_minutes: int | str | None,
        file_name: str | None,
        content_type: str | None,
    ) -> UploadReceipt:
        owner_id = (owner_id or "").strip()
        grantee_id = (grantee_id or "").strip()
        role = (role or "").strip().lower()
        permission = (permission or "").strip().lower()
        if not owner_id:
            raise ValidationError("owner id is required")
        if not grantee_id:
            raise ValidationError("grantee id is required")
        if owner_id == grantee_id:
            raise ValidationError("owner cannot share a document with themselves")
        if role not in ROLE_TABLE:
            raise ValidationError(f"unknown role {role!r}")
        tier = permission_for_role(role)
        if not permission:
            permission = tier
        elif permission != tier:
            raise ValidationError(f"permission {permission!r} does not match role {role!r} ({tier})")
        ttl = self._parse_ttl(ttl_minutes)
        if not isinstance(plaintext, (bytes, bytearray)) or not plaintext:
            raise ValidationError("document is empty")
        if len(plaintext) > self.max_upload_bytes:
            raise ValidationError(f"document exceeds {self.max_upload_bytes} bytes")

        safe_name = secure_filename(file_name or "") or "document.bin"
        ctype = (content_type or "").strip().lower() or "application/octet-stream"
        category = classify_mime_category(ctype, safe_name)

        document_id = uuid.uuid4().hex
        now = self._now()
        encrypted = self.cipher.encrypt(bytes(plaintext))
        blob_key = self.store.put_blob(document_id, encrypted.blob)

        try:
            issued = self.tokens.issue(
                ShareClaims(
                    document_id=document_id,
                    owner_id=owner_id,
                    grantee_id=grantee_id,
                    role=role,
                    permission=permission,
                ),
                ttl,
            )
            share_payload = self.codec.wrap(issued.token, issued.issued_at)
            record = DocumentRecord(
                id=document_id,
                owner_id=owner_id,
                grantee_id=grantee_id,
                role=role,
                permission=permission,
                stored_blob_ref=blob_key,
                content_hash=encrypted.content_hash,
                mime_category=category,
                file_name=safe_name,
                content_type=ctype,
                size_bytes=len(plaintext),
                description=(description or "").strip(),
                expires_at=utc_datetime(issued.expires_at),
                active=True,
                created_at=utc_datetime(now),
                updated_at=utc_datetime(now),
            )
            self.store.create(record)
        except Exception:
            self.store.discard_blob(blob_key)
            raise

        logger.info(
            "Document %s shared by %s with %s (role=%s ttl=%smin size=%s)",
            document_id,
            owner_id,
            grantee_id,
            role,
            ttl,
            len(plaintext),
        )
        return UploadReceipt(
            document_id=document_id,
            share_payload=share_payload,
            token=issued.token,
            expires_at=utc_datetime(issued.expires_at),
        )

    @staticmethod
    def _parse_ttl(ttl_minutes: int | str | None) -> int:
        if ttl_minutes is None or ttl_minutes == "":
            raise ValidationError("ttl is required")
        if isinstance(ttl_minutes, bool):
            raise ValidationError("ttl must be an integer number of minutes")
        try:
            ttl = int(ttl_minutes)
        except (TypeError, ValueError) as e:
            raise ValidationError("ttl must be an integer number of minutes") from e
        if ttl < 1 or ttl > MAX_TTL_MINUTES:
            raise ValidationError(f"ttl must be between 1 and {MAX_TTL_MINUTES} minutes")
        return ttl

    # ------------------------------------------------------------------ access

    def redeem(
        self,
        share_payload: str | bytes | dict,
        requester_grantee_id: str,
        context: RequestContext | None = None,
    ) -> VaultResult[DocumentSummary]:
        return self._guard("redeem", lambda: self._redeem(share_payload, requester_grantee_id, context or RequestContext()))

    def _redeem(self, share_payload: str | bytes | dict, requester: str, context: RequestContext) -> DocumentSummary:
        started = time.monotonic()
        token = self.codec.unwrap(share_payload)
        claims, record = self._authorize(
            token,
            requester,
            expected_document_id=None,
            access_type="redeem",
            method="payload",
            action="view",
            started=started,
            context=context,
        )
        summary = DocumentSummary(
            document_id=record.id,
            file_name=record.file_name,
            mime_category=record.mime_category,
            role=record.role,
            permission=record.permission,
            description=record.description,
            size_bytes=record.size_bytes,
            created_at=record.created_at,
            expires_at=utc_datetime(claims.expires_at),
            token=token,
        )
        self._record(record.id, record.owner_id, requester, "redeem", "payload", "view", started, context)
        return summary

    def fetch_content(
        self,
        document_id: str,
        token: str,
        requester_grantee_id: str,
        action: str = "view",
        context: RequestContext | None = None,
    ) -> VaultResult[DocumentContent]:
        return self._guard(
            "fetch_content",
            lambda: self._fetch_content(document_id, token, requester_grantee_id, action, context or RequestContext()),
        )

    def _fetch_content(
        self, document_id: str, token: str, requester: str, action: str, context: RequestContext
    ) -> DocumentContent:
        started = time.monotonic()
        action = (action or "view").strip().lower()
        access_type = "download" if action == "download" else "view"
        method = context.method if context.method in ACCESS_METHODS else "api"

        claims, record = self._authorize(
            token,
            requester,
            expected_document_id=document_id,
            access_type=access_type,
            method=method,
            action=action,
            started=started,
            context=context,
        )

        def fail(err: VaultError) -> VaultError:
            self._record(
                record.id, record.owner_id, requester, access_type, method, action, started, context, error=err
            )
            return err

        try:
            blob = self.store.read_blob(record)
        except StorageError as e:
            current = self.store.get(record.id)
            if current is None or not current.active:
                # Revoked while this request was in flight.
                raise fail(InactiveError(f"document {record.id} was revoked during fetch")) from e
            self._record(
                record.id, record.owner_id, requester, access_type, method, action, started, context,
                error_kind=e.kind,
            )
            if isinstance(e, BlobMissing):
                ops_logger.error("Active document %s has no readable blob", record.id, extra={"alert": True})
            raise

        try:
            data = self.cipher.open_verified(blob, record.content_hash)
        except (AuthenticationFailure, IntegrityMismatch) as e:
            ops_logger.error(
                "Refusing to serve document %s: %s", record.id, e.log_kind, extra={"alert": True}
            )
            raise fail(e) from e

        self._record(record.id, record.owner_id, requester, access_type, method, action, started, context)
        return DocumentContent(
            document_id=record.id,
            data=data,
            content_type=self._content_type_for(record),
            file_name=record.file_name,
        )

    @staticmethod
    def _content_type_for(record: DocumentRecord) -> str:
        if record.content_type and record.content_type != "application/octet-stream":
            return record.content_type
        return CATEGORY_CONTENT_TYPES.get(record.mime_category, "application/octet-stream")

    def _authorize(
        self,
        token: str,
        requester: str,
        *,
        expected_document_id: str | None,
        access_type: str,
        method: str,
        action: str,
        started: float,
        context: RequestContext,
    ) -> tuple[ShareClaims, DocumentRecord]:
        """Steps 1-4. Every failure past token parsing is logged before raising."""
        requester = (requester or "").strip()
        if not requester:
            raise ValidationError("requester principal is required")

        # 1. token
        try:
            claims = self.tokens.verify(token, requester)
            if expected_document_id is not None and claims.document_id != expected_document_id:
                raise TokenError(reason="scope")
        except TokenError as e:
            self._record_token_failure(
                token, requester, expected_document_id, access_type, method, action, started, context, e
            )
            raise

        def fail(err: VaultError, owner_id: str) -> VaultError:
            self._record(
                claims.document_id, owner_id, requester, access_type, method, action, started, context, error=err
            )
            return err

        # 2. existence
        record = self.store.get(claims.document_id)
        if record is None:
            raise fail(NotFoundError(f"document {claims.document_id} not found"), claims.owner_id)

        # 3. activity
        if not record.active:
            raise fail(InactiveError(f"document {record.id} is inactive"), record.owner_id)

        # The signed binding must still describe this record.
        if (record.grantee_id, record.owner_id, record.role, record.permission) != (
            claims.grantee_id,
            claims.owner_id,
            claims.role,
            claims.permission,
        ):
            raise fail(AuthorizationError(f"token binding does not match document {record.id}"), record.owner_id)

        # 4. scope
        if not is_action_allowed(claims.role, action):
            raise fail(AuthorizationError(f"role {claims.role!r} may not {action!r}"), record.owner_id)

        return claims, record

    def _record_token_failure(
        self,
        token: str,
        requester: str,
        expected_document_id: str | None,
        access_type: str,
        method: str,
        action: str,
        started: float,
        context: RequestContext,
        error: TokenError,
    ) -> None:
        """
        A rejected token is logged against the document it targets, when that
        document exists: the requested id for fetches, the claimed id for redeems.
        """
        document_id = expected_document_id or self.tokens.peek_document_id(token)
        record = self.store.get(document_id) if document_id else None
        if record is None:
            logger.info("Token rejected without document context (%s, requester=%s)", error.log_kind, requester)
            return
        self._record(record.id, record.owner_id, requester, access_type, method, action, started, context, error=error)

    def _record(
        self,
        document_id: str,
        owner_id: str,
        grantee_id: str,
        access_type: str,
        method: str,
        action: str | None,
        started: float,
        context: RequestContext,
        *,
        error: VaultError | None = None,
        error_kind: str | None = None,
    ) -> bool:
        if error is not None:
            error_kind = error.log_kind
        return self.audit_log.append(
            AccessAttempt(
                document_id=document_id,
                owner_id=owner_id,
                grantee_id=grantee_id,
                access_type=access_type,
                method=method,
                action=action,
                success=error_kind is None,
                error_kind=error_kind,
                duration_ms=int((time.monotonic() - started) * 1000),
                timestamp=utc_datetime(self._now()),
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                request_id=context.request_id,
            )
        )

    # ------------------------------------------------------------------ owner

    def revoke(self, document_id: str, requester_owner_id: str) -> VaultResult[None]:
        def _revoke() -> None:
            owner = (requester_owner_id or "").strip()
            if not owner:
                raise ValidationError("owner principal is required")
            self.store.soft_delete(document_id, owner, now=utc_datetime(self._now()))

        return self._guard("revoke", _revoke)

    def list_documents(
        self,
        requester_id: str,
        *,
        owner_id: str | None = None,
        grantee_id: str | None = None,
        include_inactive: bool = False,
    ) -> VaultResult[list[DocumentRecord]]:
        def _list() -> list[DocumentRecord]:
            requester = (requester_id or "").strip()
            if owner_id:
                if owner_id != requester:
                    raise AuthorizationError("owners may only list their own documents")
                return self.store.list_by_owner(owner_id, include_inactive=include_inactive)
            if grantee_id:
                if grantee_id != requester:
                    raise AuthorizationError("grantees may only list documents shared with them")
                return self.store.list_by_grantee(grantee_id, include_inactive=include_inactive)
            raise ValidationError("owner or grantee filter is required")

        return self._guard("list_documents", _list)

    def access_log(
        self, document_id: str, requester_owner_id: str, limit: int | None = DEFAULT_LOG_LIMIT
    ) -> VaultResult[list[AccessLogEntry]]:
        def _log() -> list[AccessLogEntry]:
            record = self.store.get(document_id)
            if record is None:
                raise NotFoundError(f"document {document_id} not found")
            if record.owner_id != (requester_owner_id or "").strip():
                raise AuthorizationError("only the owner may read the access log")
            n = DEFAULT_LOG_LIMIT if not limit else max(1, min(int(limit), MAX_LOG_LIMIT))
            return self.audit_log.query(document_id=document_id, limit=n)

        return self._guard("access_log", _log)

    def owner_access_log(
        self, requester_owner_id: str, limit: int | None = DEFAULT_LOG_LIMIT
    ) -> VaultResult[list[AccessLogEntry]]:
        """Every access to any of the owner's documents, revoked ones included, newest first."""

        def _log() -> list[AccessLogEntry]:
            owner = (requester_owner_id or "").strip()
            if not owner:
                raise ValidationError("owner principal is required")
            n = DEFAULT_LOG_LIMIT if not limit else max(1, min(int(limit), MAX_LOG_LIMIT))
            return self.audit_log.query(owner_id=owner, limit=n)

        return self._guard("owner_access_log", _log)

    # ------------------------------------------------------------------ catalogs

    @staticmethod
    def ttl_options() -> list[dict]:
        return [dict(p) for p in TTL_PRESETS]

    @staticmethod
    def role_catalog() -> list[dict]:
        return role_catalog()
