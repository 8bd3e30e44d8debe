import logging
from datetime import datetime, timedelta

import pytest

from app.docvault.audit import AccessAttempt, AccessAuditLog
from app.docvault.db import build_engine, build_sessionmaker
from app.docvault.models import AccessLogEntry, Base


@pytest.fixture()
def engine(tmp_path):
    e = build_engine(f"sqlite:///{tmp_path/'audit.db'}")
    Base.metadata.create_all(bind=e)
    return e


@pytest.fixture()
def audit_log(engine):
    return AccessAuditLog(build_sessionmaker(engine))


def _attempt(ts: datetime, **overrides) -> AccessAttempt:
    values = dict(
        document_id="doc1",
        owner_id="alice",
        grantee_id="bob",
        access_type="view",
        method="api",
        success=True,
        timestamp=ts,
        action="view",
        request_id="req-1",
        user_agent="pytest",
        ip_address="127.0.0.1",
    )
    values.update(overrides)
    return AccessAttempt(**values)


def test_append_and_query_newest_first(audit_log):
    t0 = datetime(2026, 3, 1, 9, 0, 0)
    assert audit_log.append(_attempt(t0, access_type="redeem", method="payload"))
    assert audit_log.append(_attempt(t0 + timedelta(seconds=1)))
    assert audit_log.append(_attempt(t0 + timedelta(seconds=2), document_id="doc2", success=False, error_kind="forbidden"))

    entries = audit_log.query(document_id="doc1")
    assert [e.access_type for e in entries] == ["view", "redeem"]
    assert entries[0].id > entries[1].id

    failed = audit_log.query(document_id="doc2")
    assert len(failed) == 1
    assert failed[0].success is False
    assert failed[0].error_kind == "forbidden"

    assert len(audit_log.query(grantee_id="bob")) == 3
    assert len(audit_log.query(owner_id="alice", limit=2)) == 2


def test_timestamps_never_run_backwards(audit_log):
    t0 = datetime(2026, 3, 1, 9, 0, 0)
    audit_log.append(_attempt(t0))
    audit_log.append(_attempt(t0 - timedelta(seconds=5)))

    entries = list(reversed(audit_log.query(document_id="doc1")))
    assert entries[0].timestamp == t0
    assert entries[1].timestamp == t0


def test_two_workers_read_back_in_timestamp_order(engine):
    worker_a = AccessAuditLog(build_sessionmaker(engine))
    worker_b = AccessAuditLog(build_sessionmaker(engine))
    t0 = datetime(2026, 3, 1, 12, 0, 0)

    # a stamps later but commits first
    worker_a.append(_attempt(t0 + timedelta(milliseconds=5), request_id="req-a"))
    worker_b.append(_attempt(t0, request_id="req-b"))

    entries = worker_a.query(document_id="doc1")
    stamps = [e.timestamp for e in entries]
    assert stamps == sorted(stamps, reverse=True)
    assert [e.request_id for e in entries] == ["req-a", "req-b"]
    assert len(worker_b.query(owner_id="alice")) == 2


def test_entry_serialization(audit_log):
    audit_log.append(_attempt(datetime(2026, 3, 1), duration_ms=-5))
    entry = audit_log.query(document_id="doc1")[0]
    d = entry.to_dict()
    assert d["documentId"] == "doc1"
    assert d["accessType"] == "view"
    assert d["durationMs"] == 0
    assert d["requestId"] == "req-1"
    assert d["timestamp"].endswith("Z")
    assert d["sequence"] == entry.id


def test_unknown_vocabulary_is_a_programming_error(audit_log):
    with pytest.raises(ValueError):
        audit_log.append(_attempt(datetime(2026, 3, 1), access_type="delete"))
    with pytest.raises(ValueError):
        audit_log.append(_attempt(datetime(2026, 3, 1), method="qr"))


def test_failed_append_is_counted_and_alerted(engine, audit_log, caplog):
    AccessLogEntry.__table__.drop(bind=engine)

    with caplog.at_level(logging.ERROR, logger="docvault.ops"):
        ok = audit_log.append(_attempt(datetime(2026, 3, 1)))

    assert ok is False
    assert audit_log.failed_appends == 1
    alerts = [r for r in caplog.records if r.name == "docvault.ops"]
    assert len(alerts) == 1
    assert alerts[0].alert is True
