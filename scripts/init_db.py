"""
Local development bootstrap.

Creates the vault tables directly (no alembic) and, with --generate-keys,
prints fresh key material suitable for a .env file.

Usage:
  python scripts/init_db.py [--generate-keys]
"""
import argparse
import base64
import os
import secrets
import sys
from pathlib import Path

from sqlalchemy import create_engine

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.docvault.models import Base


def generate_keys() -> dict[str, str]:
    return {
        "VAULT_ENCRYPTION_KEY": base64.urlsafe_b64encode(os.urandom(32)).decode("ascii"),
        "VAULT_SIGNING_KEY": secrets.token_urlsafe(48),
    }


def create_schema(database_url: str | None = None) -> str:
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///docvault.db").strip()
    engine = create_engine(db_url, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    return db_url


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create docvault tables for local development.")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--generate-keys", action="store_true", help="print new key material for .env")
    args = parser.parse_args(argv)

    db_url = create_schema(args.database_url)
    print(f"Schema ready at {db_url}", flush=True)
    if args.generate_keys:
        for name, value in generate_keys().items():
            print(f"{name}={value}")


if __name__ == "__main__":
    main()
