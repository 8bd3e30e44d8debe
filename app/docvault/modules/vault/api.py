from __future__ import annotations

import io

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.docvault.auth import current_principal, require_principal
from app.docvault.constants import ALLOWED_CONTENT_TYPES, DEFAULT_TTL_MINUTES
from app.docvault.modules.vault.service import RequestContext, VaultResult, VaultService

bp = Blueprint("vault", __name__)

TOKEN_HEADER = "X-Vault-Token"


def _service() -> VaultService:
    return current_app.extensions["vault_service"]


def _context(method: str = "api") -> RequestContext:
    ua = request.user_agent.string if request.user_agent else None
    return RequestContext(
        ip_address=request.remote_addr or None,
        user_agent=ua or None,
        request_id=getattr(g, "request_id", None),
        method=method,
    )


def _error(result: VaultResult):
    body = {"ok": False, "error": result.error_kind}
    if result.message:
        body["message"] = result.message
    return jsonify(body), result.status


def _bad_request(message: str):
    return jsonify({"ok": False, "error": "validation", "message": message}), 400


@bp.post("/documents")
@require_principal
def upload_document():
    f = request.files.get("file")
    if not f or not f.filename:
        return _bad_request("file is required")
    content_type = (f.mimetype or "").lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        return _bad_request("only PDF, JPEG and PNG files are accepted")
    data = f.read()

    result = _service().upload(
        current_principal(),
        data,
        (request.form.get("granteeId") or "").strip(),
        (request.form.get("role") or "").strip(),
        (request.form.get("permission") or "").strip() or None,
        request.form.get("description"),
        request.form.get("ttlMinutes") or DEFAULT_TTL_MINUTES,
        file_name=f.filename,
        content_type=content_type,
    )
    if not result.ok:
        return _error(result)
    receipt = result.value
    return (
        jsonify(
            {
                "ok": True,
                "documentId": receipt.document_id,
                "sharePayload": receipt.share_payload,
                "expiresAt": receipt.expires_at.isoformat() + "Z",
            }
        ),
        201,
    )


@bp.post("/redeem")
@require_principal
def redeem_share():
    body = request.get_json(silent=True) or {}
    payload = body.get("sharePayload") if isinstance(body, dict) else None
    if payload is None or payload == "":
        return _bad_request("sharePayload is required")

    result = _service().redeem(payload, current_principal(), _context("payload"))
    if not result.ok:
        return _error(result)
    return jsonify({"ok": True, **result.value.to_dict()})


@bp.get("/documents/<document_id>/content")
@require_principal
def document_content(document_id: str):
    token = (request.headers.get(TOKEN_HEADER) or "").strip()
    if not token:
        return jsonify({"ok": False, "error": "invalid_token"}), 401
    action = (request.args.get("action") or "view").strip().lower()
    # "direct" when the grantee opened the document from their listing rather than a scanned payload
    via = "direct" if (request.args.get("via") or "").strip().lower() == "direct" else "api"

    result = _service().fetch_content(document_id, token, current_principal(), action, _context(via))
    if not result.ok:
        return _error(result)
    content = result.value
    resp = send_file(
        io.BytesIO(content.data),
        mimetype=content.content_type,
        as_attachment=(action == "download"),
        download_name=content.file_name,
        max_age=0,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@bp.get("/documents")
@require_principal
def list_documents():
    owner = (request.args.get("owner") or "").strip() or None
    grantee = (request.args.get("grantee") or "").strip() or None
    include_inactive = (request.args.get("includeInactive") or "").strip().lower() in ("1", "true", "yes")

    result = _service().list_documents(
        current_principal(), owner_id=owner, grantee_id=grantee, include_inactive=include_inactive
    )
    if not result.ok:
        return _error(result)
    return jsonify({"ok": True, "documents": [d.to_dict() for d in result.value]})


def _parse_limit():
    raw_limit = (request.args.get("limit") or "").strip()
    if not raw_limit:
        return None
    return int(raw_limit)


@bp.get("/documents/<document_id>/log")
@require_principal
def document_log(document_id: str):
    try:
        limit = _parse_limit()
    except ValueError:
        return _bad_request("limit must be an integer")

    result = _service().access_log(document_id, current_principal(), limit)
    if not result.ok:
        return _error(result)
    return jsonify({"ok": True, "entries": [e.to_dict() for e in result.value]})


@bp.get("/logs")
@require_principal
def owner_logs():
    try:
        limit = _parse_limit()
    except ValueError:
        return _bad_request("limit must be an integer")

    document_id = (request.args.get("documentId") or "").strip()
    if document_id:
        result = _service().access_log(document_id, current_principal(), limit)
    else:
        result = _service().owner_access_log(current_principal(), limit)
    if not result.ok:
        return _error(result)
    return jsonify({"ok": True, "entries": [e.to_dict() for e in result.value]})


@bp.delete("/documents/<document_id>")
@require_principal
def revoke_document(document_id: str):
    result = _service().revoke(document_id, current_principal())
    if not result.ok:
        return _error(result)
    return jsonify({"ok": True, "documentId": document_id, "active": False})


@bp.get("/ttl-options")
def ttl_options():
    return jsonify({"ok": True, "options": VaultService.ttl_options()})


@bp.get("/roles")
def roles():
    return jsonify({"ok": True, "roles": VaultService.role_catalog()})
