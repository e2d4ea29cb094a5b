#!/usr/bin/env python3
"""
Container entrypoint for the RUKEM web app.

Runs the release phase (migrations + seed) unless SKIP_RELEASE=1, then
replaces this process with gunicorn serving app.wsgi:app.

Environment:
    PORT               listen port (default 8080)
    WEB_CONCURRENCY    gunicorn workers (default 2)
    GUNICORN_TIMEOUT   worker timeout in seconds (default 60; PDF exports of
                       the full ledger can take a while)
    SKIP_RELEASE       set to 1 when migrations run as a separate job
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _port() -> str:
    raw = (os.environ.get("PORT") or "").strip() or "8080"
    if not raw.isdigit() or not 1 <= int(raw) <= 65535:
        print(f"ERROR: Invalid PORT value '{raw}'. Must be integer 1-65535.", flush=True)
        sys.exit(1)
    return raw


def _gunicorn_argv(port: str) -> list[str]:
    workers = (os.environ.get("WEB_CONCURRENCY") or "").strip() or "2"
    timeout = (os.environ.get("GUNICORN_TIMEOUT") or "").strip() or "60"
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", timeout,
        # engine is disposed in each worker after fork (see create_app)
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _port()

    if (os.environ.get("SKIP_RELEASE") or "").strip() == "1":
        print("=== Release phase skipped (SKIP_RELEASE=1) ===", flush=True)
    else:
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    argv = _gunicorn_argv(port)
    print(f"=== Starting gunicorn: {' '.join(argv[1:])} ===", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
