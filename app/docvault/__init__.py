import logging

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from werkzeug.middleware.proxy_fix import ProxyFix

from app.docvault.audit import AccessAuditLog
from app.docvault.auth import load_current_principal
from app.docvault.config import decode_encryption_key, load_config, validate_signing_key
from app.docvault.db import init_db
from app.docvault.modules.vault.api import bp as vault_bp
from app.docvault.modules.vault.cipher import CipherEngine
from app.docvault.modules.vault.payload import PayloadCodec
from app.docvault.modules.vault.service import VaultService
from app.docvault.modules.vault.store import VaultStore
from app.docvault.modules.vault.tokens import TokenService
from app.docvault.routes import bp as routes_bp
from app.docvault.storage import S3Storage, storage_from_config

REQUIRED_TABLES = ("vault_documents", "vault_access_log")


def _build_vault(app: Flask) -> VaultService:
    # Key material is validated before anything is served; there is no fallback key.
    encryption_key = decode_encryption_key(app.config.get("VAULT_ENCRYPTION_KEY") or "")
    signing_key = validate_signing_key(app.config.get("VAULT_SIGNING_KEY") or "")

    sessions = app.extensions["sqlalchemy_sessionmaker"]
    storage = storage_from_config(app.config)
    audit_log = AccessAuditLog(sessions)
    service = VaultService(
        cipher=CipherEngine(encryption_key),
        tokens=TokenService(
            signing_key,
            issuer=app.config.get("VAULT_TOKEN_ISSUER") or "docvault",
            clock_skew_seconds=app.config.get("VAULT_CLOCK_SKEW_SECONDS", 30),
        ),
        codec=PayloadCodec(),
        store=VaultStore(sessions, storage),
        audit_log=audit_log,
        max_upload_bytes=app.config["VAULT_MAX_UPLOAD_BYTES"],
    )
    app.extensions["vault_storage"] = storage
    app.extensions["vault_audit_log"] = audit_log
    app.extensions["vault_service"] = service
    return service


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    level = app.config.get("LOG_LEVEL") or "INFO"
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("app.docvault").setLevel(level)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")

    hops = app.config.get("TRUSTED_PROXY_HOPS") or 0
    if hops > 0:
        # Only the given number of proxy hops may set the client address.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops)

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    _build_vault(app)

    # Storage health check (fail loudly on misconfiguration)
    storage = app.extensions["vault_storage"]
    if isinstance(storage, S3Storage):
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            try:
                storage._client().head_bucket(Bucket=storage.bucket)
                app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(vault_bp, url_prefix="/vault")

    app.before_request(load_current_principal)

    # Schema health: detect a database that was never migrated.
    app.config.setdefault("_schema_health_ok", False)
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> bool:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in REQUIRED_TABLES if not insp.has_table(t)]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            return False
        if missing:
            if not app.config.get("_schema_health_logged"):
                app.config["_schema_health_logged"] = True
                app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
            return False
        app.config["_schema_health_ok"] = True
        return True

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok") or not request.path.startswith("/vault/"):
            return None
        # Re-check so a migration applied after boot is picked up without a restart.
        if _run_schema_health_check():
            return None
        return jsonify({"ok": False, "error": "schema_out_of_date"}), 503

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"ok": False, "error": "not_found"}), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"ok": False, "error": "method_not_allowed"}), 405

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit = app.config.get("VAULT_MAX_UPLOAD_BYTES")
        return jsonify({"ok": False, "error": "validation", "message": f"upload exceeds {limit} bytes"}), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"ok": False, "error": "internal"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
