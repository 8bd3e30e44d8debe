#!/usr/bin/env python3
"""
Container entrypoint: release phase, then gunicorn serving ``app.wsgi:app``.

Environment:
    PORT              listen port (default 8080)
    WEB_CONCURRENCY   gunicorn workers (default 2)
    GUNICORN_TIMEOUT  worker timeout in seconds (default 60)

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _env_int(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"ERROR: {name}={raw!r} is not an integer.")
    if not low <= value <= high:
        raise SystemExit(f"ERROR: {name}={value} outside {low}-{high}.")
    return value


def gunicorn_argv() -> list[str]:
    port = _env_int("PORT", 8080, low=1, high=65535)
    workers = _env_int("WEB_CONCURRENCY", 2, low=1, high=64)
    timeout = _env_int("GUNICORN_TIMEOUT", 60, low=1, high=3600)
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    argv = gunicorn_argv()

    from scripts.release import run_release

    print("=== docvault: release ===", flush=True)
    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"=== docvault: exec {' '.join(argv)} ===", flush=True)
    # gunicorn takes over this PID and receives signals directly
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
