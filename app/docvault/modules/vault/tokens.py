"""
Capability tokens: signed, expiring, scope-limited share credentials.

Tokens are HS256 JWTs. Verification is a pure function of the token, the
signing key and the injected clock; there is no server-side token store.
"""
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

import jwt

from app.docvault.config import validate_signing_key
from app.docvault.errors import TokenError

logger = logging.getLogger(__name__)

TOKEN_TYPE = "docvault-access"
TOKEN_AUDIENCE = "docvault-share"
TOKEN_ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ("iss", "aud", "sub", "iat", "exp", "type", "document_id", "owner_id", "role", "permission")


@dataclass(frozen=True)
class ShareClaims:
    document_id: str
    owner_id: str
    grantee_id: str
    role: str
    permission: str
    issued_at: float = 0.0
    expires_at: float = 0.0
    token_id: str | None = None


@dataclass(frozen=True)
class IssuedToken:
    token: str
    issued_at: float
    expires_at: float


class TokenService:
    def __init__(
        self,
        signing_key: str,
        *,
        issuer: str = "docvault",
        clock_skew_seconds: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._key = validate_signing_key(signing_key)
        self.issuer = issuer
        self.clock_skew_seconds = max(0, int(clock_skew_seconds))
        self._clock = clock

    def issue(self, claims: ShareClaims, ttl_minutes: int) -> IssuedToken:
        if ttl_minutes <= 0:
            raise ValueError("ttl_minutes must be positive")
        now = self._clock()
        exp = now + ttl_minutes * 60
        payload = {
            "iss": self.issuer,
            "aud": TOKEN_AUDIENCE,
            "sub": claims.grantee_id,
            "type": TOKEN_TYPE,
            "document_id": claims.document_id,
            "owner_id": claims.owner_id,
            "role": claims.role,
            "permission": claims.permission,
            "iat": now,
            "exp": exp,
            "jti": uuid.uuid4().hex,
        }
        token = jwt.encode(payload, self._key, algorithm=TOKEN_ALGORITHM)
        return IssuedToken(token=token, issued_at=now, expires_at=exp)

    def verify(self, token: str, expected_grantee_id: str) -> ShareClaims:
        if not token or not isinstance(token, str):
            raise TokenError(reason="malformed")
        try:
            # Time windows are checked below against the injected clock.
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[TOKEN_ALGORITHM],
                audience=TOKEN_AUDIENCE,
                issuer=self.issuer,
                options={
                    "require": list(_REQUIRED_CLAIMS),
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise TokenError(reason="signature") from e
        except jwt.InvalidAudienceError as e:
            raise TokenError(reason="audience") from e
        except jwt.InvalidIssuerError as e:
            raise TokenError(reason="audience") from e
        except jwt.PyJWTError as e:
            raise TokenError(reason="malformed") from e

        if payload.get("type") != TOKEN_TYPE:
            raise TokenError(reason="type")

        try:
            issued_at = float(payload["iat"])
            expires_at = float(payload["exp"])
        except (TypeError, ValueError) as e:
            raise TokenError(reason="malformed") from e

        now = self._clock()
        if now < issued_at - self.clock_skew_seconds:
            raise TokenError(reason="not_yet_valid")
        # exp is a hard stop: no skew allowance on this side
        if now >= expires_at:
            raise TokenError(reason="expired")

        if not expected_grantee_id or payload.get("sub") != expected_grantee_id:
            raise TokenError(reason="grantee")

        return ShareClaims(
            document_id=str(payload["document_id"]),
            owner_id=str(payload["owner_id"]),
            grantee_id=str(payload["sub"]),
            role=str(payload["role"]),
            permission=str(payload["permission"]),
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=payload.get("jti"),
        )

    @staticmethod
    def peek_document_id(token: str) -> str | None:
        """
        Unverified read of the claimed document id. Only used to attach a failed
        attempt to an existing document's access log; never for authorization.
        """
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return None
        doc_id = payload.get("document_id") if isinstance(payload, dict) else None
        return doc_id if isinstance(doc_id, str) and doc_id else None
