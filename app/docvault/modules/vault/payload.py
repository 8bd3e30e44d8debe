"""
Share payload codec and the role table.

The payload is the compact JSON envelope that gets encoded into a scannable
code. The role table is the single place that maps a grantee role to its
permission tier and allowed actions; anything not listed is denied.
"""
from __future__ import annotations

import json
from dataclasses import dataclass

from app.docvault.errors import FormatError

PAYLOAD_SCHEMA_VERSION = "1.0"
PAYLOAD_TYPE = "docvault-share"
# Comfortably inside a version 40 QR code in byte mode
MAX_PAYLOAD_BYTES = 2048


@dataclass(frozen=True)
class RoleGrant:
    permission: str
    description: str
    allowed_actions: frozenset[str]


ROLE_TABLE: dict[str, RoleGrant] = {
    "doctor": RoleGrant(
        permission="full",
        description="Full access to all medical records and documents",
        allowed_actions=frozenset({"view", "download", "annotate", "prescribe"}),
    ),
    "pharmacist": RoleGrant(
        permission="partial",
        description="Access to prescriptions and medication-related documents only",
        allowed_actions=frozenset({"view", "download"}),
    ),
    "diagnostic": RoleGrant(
        permission="read-only",
        description="Read-only access to lab reports and diagnostic documents",
        allowed_actions=frozenset({"view"}),
    ),
}


def is_action_allowed(role: str, action: str) -> bool:
    grant = ROLE_TABLE.get(role)
    if grant is None:
        return False
    return action in grant.allowed_actions


def permission_for_role(role: str) -> str | None:
    grant = ROLE_TABLE.get(role)
    return grant.permission if grant else None


def role_catalog() -> list[dict]:
    return [
        {
            "role": role,
            "permission": grant.permission,
            "description": grant.description,
            "allowedActions": sorted(grant.allowed_actions),
        }
        for role, grant in ROLE_TABLE.items()
    ]


class PayloadCodec:
    def wrap(self, token: str, issued_at: float) -> str:
        envelope = {
            "token": token,
            "issuedTimestamp": int(round(issued_at * 1000)),
            "schemaVersion": PAYLOAD_SCHEMA_VERSION,
            "typeTag": PAYLOAD_TYPE,
        }
        payload = json.dumps(envelope, separators=(",", ":"))
        if len(payload.encode("utf-8")) > MAX_PAYLOAD_BYTES:
            raise ValueError(f"share payload exceeds {MAX_PAYLOAD_BYTES} bytes")
        return payload

    def unwrap(self, payload: str | bytes | dict) -> str:
        """Return the token carried by ``payload`` or raise FormatError."""
        if isinstance(payload, dict):
            envelope = payload
        else:
            if isinstance(payload, bytes):
                try:
                    payload = payload.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise FormatError("share payload is not utf-8") from e
            if not isinstance(payload, str) or not payload.strip():
                raise FormatError("share payload is empty")
            if len(payload.encode("utf-8")) > MAX_PAYLOAD_BYTES:
                raise FormatError("share payload too large")
            try:
                envelope = json.loads(payload)
            except json.JSONDecodeError as e:
                raise FormatError("share payload is not JSON") from e

        if not isinstance(envelope, dict):
            raise FormatError("share payload must be a JSON object")
        if envelope.get("typeTag") != PAYLOAD_TYPE:
            raise FormatError("share payload type tag mismatch")
        if envelope.get("schemaVersion") != PAYLOAD_SCHEMA_VERSION:
            raise FormatError("unsupported share payload schema version")
        issued = envelope.get("issuedTimestamp")
        if not isinstance(issued, int) or isinstance(issued, bool):
            raise FormatError("share payload issuedTimestamp must be an integer")
        token = envelope.get("token")
        if not isinstance(token, str) or not token:
            raise FormatError("share payload carries no token")
        return token
