from __future__ import annotations

import uuid
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify, request

# Principal ids come from an upstream gateway that has already authenticated the caller.
_MAX_PRINCIPAL_LENGTH = 128


def load_current_principal() -> None:
    """
    Loads g.principal_id from the gateway header.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        incoming = (request.headers.get("X-Request-Id") or "").strip()
        g.request_id = incoming[:64] if incoming else uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.principal_id = None
        return

    header = current_app.config.get("PRINCIPAL_HEADER") or "X-Principal-Id"
    principal = (request.headers.get(header) or "").strip()
    if not principal or len(principal) > _MAX_PRINCIPAL_LENGTH:
        g.principal_id = None
        return
    g.principal_id = principal


def current_principal() -> str:
    principal = getattr(g, "principal_id", None)
    if not principal:
        # require_principal should prevent this
        raise RuntimeError("No current principal")
    return principal


def require_principal(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not getattr(g, "principal_id", None):
            return jsonify({"ok": False, "error": "unauthenticated"}), 401
        return fn(*args, **kwargs)

    return wrapped
