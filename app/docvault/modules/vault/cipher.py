"""
Authenticated encryption of document bytes.

Blob layout (one self-describing unit per document):

    magic b"DV" | version (1 byte) | nonce (12 bytes) | ciphertext | tag (16 bytes)

The header is bound into the associated data together with a fixed context
string, so a blob cannot be replayed into another subsystem or re-labelled
with a different version.
"""
from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.docvault.errors import AuthenticationFailure, IntegrityMismatch

BLOB_MAGIC = b"DV"
BLOB_VERSION = 1
NONCE_SIZE = 12
TAG_SIZE = 16
HEADER_SIZE = len(BLOB_MAGIC) + 1
MIN_BLOB_SIZE = HEADER_SIZE + NONCE_SIZE + TAG_SIZE

DOMAIN_CONTEXT = b"docvault/document-blob"


@dataclass(frozen=True)
class EncryptedBlob:
    blob: bytes
    content_hash: str


def hash_content(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _header(version: int) -> bytes:
    return BLOB_MAGIC + bytes([version])


def _associated_data(header: bytes) -> bytes:
    return DOMAIN_CONTEXT + b"|" + header


class CipherEngine:
    """AES-256-GCM with a process-wide key. Safe to share across threads."""

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ValueError("CipherEngine requires a 32-byte key")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: bytes) -> EncryptedBlob:
        header = _header(BLOB_VERSION)
        nonce = os.urandom(NONCE_SIZE)
        # AESGCM.encrypt returns ciphertext || tag
        sealed = self._aead.encrypt(nonce, plaintext, _associated_data(header))
        return EncryptedBlob(blob=header + nonce + sealed, content_hash=hash_content(plaintext))

    def decrypt(self, blob: bytes) -> bytes:
        if len(blob) < MIN_BLOB_SIZE:
            raise AuthenticationFailure(f"blob too short ({len(blob)} bytes)")
        header = blob[:HEADER_SIZE]
        if header[: len(BLOB_MAGIC)] != BLOB_MAGIC:
            raise AuthenticationFailure("blob magic mismatch")
        version = header[len(BLOB_MAGIC)]
        if version != BLOB_VERSION:
            raise AuthenticationFailure(f"unsupported blob version {version}")
        nonce = blob[HEADER_SIZE : HEADER_SIZE + NONCE_SIZE]
        sealed = blob[HEADER_SIZE + NONCE_SIZE :]
        try:
            return self._aead.decrypt(nonce, sealed, _associated_data(header))
        except InvalidTag as e:
            raise AuthenticationFailure("authentication tag mismatch") from e

    def verify_integrity(self, plaintext: bytes, expected_hash: str) -> bool:
        actual = hash_content(plaintext)
        return hmac.compare_digest(actual.encode("ascii"), (expected_hash or "").lower().encode("ascii"))

    def open_verified(self, blob: bytes, expected_hash: str) -> bytes:
        """Decrypt and check the plaintext hash. Never returns unverified bytes."""
        plaintext = self.decrypt(blob)
        if not self.verify_integrity(plaintext, expected_hash):
            raise IntegrityMismatch("plaintext hash does not match stored content hash")
        return plaintext
