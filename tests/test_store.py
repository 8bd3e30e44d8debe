import logging
from datetime import datetime, timedelta

import pytest

from app.docvault.db import build_engine, build_sessionmaker
from app.docvault.errors import AuthorizationError, NotFoundError
from app.docvault.models import Base
from app.docvault.modules.vault.models import DocumentRecord
from app.docvault.modules.vault.store import VaultStore, blob_key_for
from app.docvault.storage import BlobMissing, LocalStorage, StorageError


@pytest.fixture()
def store(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path/'store.db'}")
    Base.metadata.create_all(bind=engine)
    return VaultStore(build_sessionmaker(engine), LocalStorage(root=tmp_path / "blobs"))


def _record(store: VaultStore, doc_id: str, *, owner="alice", grantee="bob", created=None) -> DocumentRecord:
    key = store.put_blob(doc_id, b"ciphertext-" + doc_id.encode())
    created = created or datetime(2026, 1, 1, 12, 0, 0)
    return store.create(
        DocumentRecord(
            id=doc_id,
            owner_id=owner,
            grantee_id=grantee,
            role="doctor",
            permission="full",
            stored_blob_ref=key,
            content_hash="0" * 64,
            mime_category="pdf",
            file_name="scan.pdf",
            content_type="application/pdf",
            size_bytes=10,
            description="",
            expires_at=created + timedelta(minutes=30),
            active=True,
            created_at=created,
            updated_at=created,
        )
    )


def test_blob_keys_are_sharded():
    assert blob_key_for("abcdef") == "vault/ab/abcdef.blob"


def test_create_get_and_read_blob(store):
    _record(store, "aa11")
    rec = store.get("aa11")
    assert rec is not None
    assert rec.active is True
    assert store.read_blob(rec) == b"ciphertext-aa11"
    assert store.get("missing") is None
    assert store.get("") is None


def test_listings_are_newest_first_and_skip_inactive(store):
    base = datetime(2026, 1, 1)
    _record(store, "d1", created=base)
    _record(store, "d2", created=base + timedelta(minutes=1))
    _record(store, "d3", created=base + timedelta(minutes=2), grantee="carol")
    store.soft_delete("d2", "alice")

    assert [r.id for r in store.list_by_owner("alice")] == ["d3", "d1"]
    assert [r.id for r in store.list_by_owner("alice", include_inactive=True)] == ["d3", "d2", "d1"]
    assert [r.id for r in store.list_by_grantee("bob")] == ["d1"]
    assert [r.id for r in store.list_by_grantee("carol")] == ["d3"]


def test_soft_delete_deactivates_and_releases_blob(store):
    rec = _record(store, "bb22")
    key = rec.stored_blob_ref

    after = store.soft_delete("bb22", "alice", now=datetime(2026, 2, 1))
    assert after.active is False
    assert after.stored_blob_ref is None
    assert after.updated_at == datetime(2026, 2, 1)
    assert not store.storage.exists(key)

    with pytest.raises(StorageError):
        store.read_blob(after)


def test_soft_delete_is_idempotent(store):
    _record(store, "cc33")
    store.soft_delete("cc33", "alice")
    again = store.soft_delete("cc33", "alice")
    assert again.active is False


def test_soft_delete_requires_owner(store):
    _record(store, "dd44")
    with pytest.raises(AuthorizationError):
        store.soft_delete("dd44", "bob")
    assert store.get("dd44").active is True


def test_soft_delete_unknown_document(store):
    with pytest.raises(NotFoundError):
        store.soft_delete("nope", "alice")


def test_blob_release_failure_keeps_record_inactive(store, monkeypatch, caplog):
    rec = _record(store, "ee55")

    def _fail(key):
        raise StorageError("backend down", retryable=True)

    monkeypatch.setattr(store.storage.__class__, "delete", lambda self, key: _fail(key))
    with caplog.at_level(logging.ERROR, logger="docvault.ops"):
        after = store.soft_delete("ee55", "alice")

    assert after.active is False
    assert after.stored_blob_ref == rec.stored_blob_ref
    alerts = [r for r in caplog.records if r.name == "docvault.ops"]
    assert alerts and getattr(alerts[0], "alert", False) is True


def test_local_storage_rejects_escaping_keys(tmp_path):
    storage = LocalStorage(root=tmp_path / "root")
    with pytest.raises(StorageError):
        storage.put_bytes("../outside.bin", b"x")


def test_local_storage_missing_blob(tmp_path):
    storage = LocalStorage(root=tmp_path / "root")
    with pytest.raises(BlobMissing):
        storage.get_bytes("vault/zz/none.blob")
    storage.delete("vault/zz/none.blob")
