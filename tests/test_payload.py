import json

import pytest

from app.docvault.errors import FormatError
from app.docvault.modules.vault.payload import (
    MAX_PAYLOAD_BYTES,
    ROLE_TABLE,
    PayloadCodec,
    is_action_allowed,
    permission_for_role,
    role_catalog,
)


@pytest.fixture()
def codec():
    return PayloadCodec()


def test_wrap_produces_compact_envelope(codec):
    payload = codec.wrap("abc.def.ghi", 1_700_000_000.123)
    assert " " not in payload
    envelope = json.loads(payload)
    assert envelope == {
        "token": "abc.def.ghi",
        "issuedTimestamp": 1_700_000_000_123,
        "schemaVersion": "1.0",
        "typeTag": "docvault-share",
    }
    assert codec.unwrap(payload) == "abc.def.ghi"


def test_unwrap_accepts_bytes_and_parsed_objects(codec):
    payload = codec.wrap("tok", 1.0)
    assert codec.unwrap(payload.encode("utf-8")) == "tok"
    assert codec.unwrap(json.loads(payload)) == "tok"


@pytest.mark.parametrize(
    "envelope",
    [
        {"token": "t", "issuedTimestamp": 1, "schemaVersion": "1.0", "typeTag": "other"},
        {"token": "t", "issuedTimestamp": 1, "schemaVersion": "2.0", "typeTag": "docvault-share"},
        {"token": "t", "issuedTimestamp": "1", "schemaVersion": "1.0", "typeTag": "docvault-share"},
        {"token": "t", "issuedTimestamp": True, "schemaVersion": "1.0", "typeTag": "docvault-share"},
        {"token": "", "issuedTimestamp": 1, "schemaVersion": "1.0", "typeTag": "docvault-share"},
        {"issuedTimestamp": 1, "schemaVersion": "1.0", "typeTag": "docvault-share"},
        [],
    ],
)
def test_unwrap_rejects_bad_envelopes(codec, envelope):
    with pytest.raises(FormatError):
        codec.unwrap(json.dumps(envelope))


@pytest.mark.parametrize("raw", ["", "   ", "not json", b"\xff\xfe", "{" * 10])
def test_unwrap_rejects_unparseable_input(codec, raw):
    with pytest.raises(FormatError):
        codec.unwrap(raw)


def test_oversize_payloads_are_refused(codec):
    with pytest.raises(ValueError):
        codec.wrap("t" * MAX_PAYLOAD_BYTES, 1.0)
    with pytest.raises(FormatError):
        codec.unwrap("x" * (MAX_PAYLOAD_BYTES + 1))


def test_role_table_scopes():
    allowed = {
        "doctor": {"view", "download", "annotate", "prescribe"},
        "pharmacist": {"view", "download"},
        "diagnostic": {"view"},
    }
    for role, actions in allowed.items():
        for action in ("view", "download", "annotate", "prescribe", "delete"):
            assert is_action_allowed(role, action) is (action in actions), (role, action)


def test_unknown_role_is_denied_everything():
    assert not is_action_allowed("janitor", "view")
    assert permission_for_role("janitor") is None


def test_role_permissions():
    assert permission_for_role("doctor") == "full"
    assert permission_for_role("pharmacist") == "partial"
    assert permission_for_role("diagnostic") == "read-only"


def test_role_catalog_covers_table():
    catalog = role_catalog()
    assert [c["role"] for c in catalog] == list(ROLE_TABLE)
    assert all(c["description"] for c in catalog)
