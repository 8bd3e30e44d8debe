"""
Error taxonomy for the document vault.

Every component raises a subclass of VaultError. The orchestrator
(modules/vault/service.py) catches them at its boundary and hands callers
only the coarse ``kind``; details stay in the logs.
"""
from __future__ import annotations


class VaultError(Exception):
    kind = "internal"
    status = 500

    def __init__(self, message: str = "", *, kind: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        if kind:
            self.kind = kind

    @property
    def log_kind(self) -> str:
        """Finer-grained label written to the access log and operator logs."""
        return self.kind


class ValidationError(VaultError):
    """Malformed request. No document context, so nothing is written to the access log."""

    kind = "validation"
    status = 400


class FormatError(ValidationError):
    """Share payload could not be parsed or has the wrong schema/type."""

    kind = "bad_payload"


class TokenError(VaultError):
    kind = "invalid_token"
    status = 401

    def __init__(self, message: str = "", *, reason: str = "invalid") -> None:
        super().__init__(message or f"token rejected: {reason}")
        self.reason = reason

    @property
    def log_kind(self) -> str:
        return f"{self.kind}:{self.reason}"


class NotFoundError(VaultError):
    kind = "not_found"
    status = 404


class InactiveError(VaultError):
    # Same status as NotFoundError; a revoked document looks gone to the grantee.
    kind = "inactive"
    status = 404


class AuthorizationError(VaultError):
    kind = "forbidden"
    status = 403


class AuthenticationFailure(VaultError):
    """AEAD tag did not verify, or the blob framing is malformed."""

    kind = "authentication_failure"
    status = 500


class IntegrityMismatch(VaultError):
    """Decryption succeeded but the plaintext hash disagrees with the stored hash."""

    kind = "integrity_mismatch"
    status = 500
