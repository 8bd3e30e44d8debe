import base64
import binascii
import os
from dataclasses import dataclass


MIN_SIGNING_KEY_LENGTH = 32


@dataclass(frozen=True)
class Settings:
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    vault_encryption_key: str
    vault_signing_key: str
    vault_token_issuer: str
    vault_clock_skew_seconds: int
    vault_max_upload_bytes: int
    principal_header: str
    trusted_proxy_hops: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e


def load_settings() -> Settings:
    return Settings(
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///docvault.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        vault_encryption_key=_getenv("VAULT_ENCRYPTION_KEY", ""),
        vault_signing_key=_getenv("VAULT_SIGNING_KEY", ""),
        vault_token_issuer=_getenv("VAULT_TOKEN_ISSUER", "docvault"),
        vault_clock_skew_seconds=_getenv_int("VAULT_CLOCK_SKEW_SECONDS", 30),
        vault_max_upload_bytes=_getenv_int("VAULT_MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        principal_header=_getenv("PRINCIPAL_HEADER", "X-Principal-Id"),
        trusted_proxy_hops=_getenv_int("TRUSTED_PROXY_HOPS", 0),
    )


def decode_encryption_key(raw: str) -> bytes:
    """
    Decode the urlsafe-base64 document key. Exactly 32 bytes (AES-256) are accepted.
    """
    if not raw:
        raise RuntimeError("VAULT_ENCRYPTION_KEY is required (urlsafe base64 of 32 random bytes).")
    padded = raw + "=" * (-len(raw) % 4)
    try:
        key = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise RuntimeError("VAULT_ENCRYPTION_KEY is not valid urlsafe base64.") from e
    if len(key) != 32:
        raise RuntimeError(f"VAULT_ENCRYPTION_KEY must decode to 32 bytes (got {len(key)}).")
    return key


def validate_signing_key(raw: str) -> str:
    if not raw:
        raise RuntimeError("VAULT_SIGNING_KEY is required; there is no default signing secret.")
    if len(raw) < MIN_SIGNING_KEY_LENGTH:
        raise RuntimeError(
            f"VAULT_SIGNING_KEY too short ({len(raw)} chars, need >= {MIN_SIGNING_KEY_LENGTH})."
        )
    return raw


def load_config() -> dict:
    s = load_settings()
    return {
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "VAULT_ENCRYPTION_KEY": s.vault_encryption_key,
        "VAULT_SIGNING_KEY": s.vault_signing_key,
        "VAULT_TOKEN_ISSUER": s.vault_token_issuer,
        "VAULT_CLOCK_SKEW_SECONDS": s.vault_clock_skew_seconds,
        "VAULT_MAX_UPLOAD_BYTES": s.vault_max_upload_bytes,
        "PRINCIPAL_HEADER": s.principal_header,
        "TRUSTED_PROXY_HOPS": s.trusted_proxy_hops,
        # multipart envelope slightly above the per-document limit
        "MAX_CONTENT_LENGTH": s.vault_max_upload_bytes + 1024 * 1024,
    }
