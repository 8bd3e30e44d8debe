from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON, including the audit append failure counter."""
    audit_log = current_app.extensions.get("vault_audit_log")
    failed = audit_log.failed_appends if audit_log is not None else 0
    return {"ok": True, "auditFailures": failed}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    """
    return "ok", 200
