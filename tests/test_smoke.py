import base64

import pytest

from app.docvault import create_app
from app.docvault.config import load_config
from app.docvault.models import Base
from scripts.start import gunicorn_argv

ENCRYPTION_KEY = base64.urlsafe_b64encode(bytes(range(32))).decode("ascii")
SIGNING_KEY = "s" * 48


def _set_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("VAULT_ENCRYPTION_KEY", ENCRYPTION_KEY)
    monkeypatch.setenv("VAULT_SIGNING_KEY", SIGNING_KEY)
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "TRUSTED_PROXY_HOPS"):
        monkeypatch.delenv(k, raising=False)


@pytest.fixture()
def client(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["auditFailures"] == 0


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_vault_requires_principal(client):
    r = client.get("/vault/documents?owner=alice")
    assert r.status_code == 401
    assert r.json == {"ok": False, "error": "unauthenticated"}


def test_catalogs_are_public(client):
    r = client.get("/vault/ttl-options")
    assert r.status_code == 200
    assert [o["minutes"] for o in r.json["options"]] == [30, 120, 1440, 10080]

    r = client.get("/vault/roles")
    assert r.status_code == 200
    by_role = {x["role"]: x for x in r.json["roles"]}
    assert by_role["doctor"]["permission"] == "full"
    assert by_role["diagnostic"]["allowedActions"] == ["view"]


def test_missing_encryption_key_fails_startup(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    monkeypatch.setenv("VAULT_ENCRYPTION_KEY", "")
    with pytest.raises(RuntimeError, match="VAULT_ENCRYPTION_KEY"):
        create_app()


def test_wrong_length_encryption_key_fails_startup(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    monkeypatch.setenv("VAULT_ENCRYPTION_KEY", base64.urlsafe_b64encode(b"k" * 16).decode("ascii"))
    with pytest.raises(RuntimeError, match="32 bytes"):
        create_app()


def test_missing_signing_key_fails_startup(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    monkeypatch.delenv("VAULT_SIGNING_KEY", raising=False)
    with pytest.raises(RuntimeError, match="VAULT_SIGNING_KEY"):
        create_app()


def test_short_signing_key_fails_startup(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    monkeypatch.setenv("VAULT_SIGNING_KEY", "too-short")
    with pytest.raises(RuntimeError, match="too short"):
        create_app()


def test_production_refuses_sqlite(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()


def test_unmigrated_database_is_reported(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    app = create_app()
    c = app.test_client()
    r = c.get("/vault/documents?owner=alice", headers={"X-Principal-Id": "alice"})
    assert r.status_code == 503
    assert r.json["error"] == "schema_out_of_date"

    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    r = c.get("/vault/documents?owner=alice", headers={"X-Principal-Id": "alice"})
    assert r.status_code == 200
    assert r.json["documents"] == []


def test_start_script_builds_gunicorn_command(monkeypatch):
    for k in ("PORT", "WEB_CONCURRENCY", "GUNICORN_TIMEOUT"):
        monkeypatch.delenv(k, raising=False)
    argv = gunicorn_argv()
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:8080"
    assert argv[argv.index("--workers") + 1] == "2"

    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("WEB_CONCURRENCY", "4")
    argv = gunicorn_argv()
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:9000"
    assert argv[argv.index("--workers") + 1] == "4"

    monkeypatch.setenv("PORT", "70000")
    with pytest.raises(SystemExit):
        gunicorn_argv()


def test_config_carries_no_session_settings(tmp_path, monkeypatch):
    _set_env(monkeypatch, tmp_path)
    monkeypatch.setenv("SECRET_KEY", "left-over")
    cfg = load_config()
    assert "SECRET_KEY" not in cfg
    assert not [k for k in cfg if k.startswith("SESSION_COOKIE")]
    assert cfg["TRUSTED_PROXY_HOPS"] == 0
