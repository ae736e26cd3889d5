#!/usr/bin/env python3
"""
Container entry point: release steps, then gunicorn serving app.wsgi:app.

Environment:
  PORT                        listen port (default 8080)
  WEB_CONCURRENCY             gunicorn workers (default 2)
  GUNICORN_TIMEOUT            worker timeout in seconds (default 60)
  RELEASE_EXPIRE_SUBSCRIPTIONS=1  also expire overdue subscriptions on boot
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _positive_int(name: str, default: int, *, upper: int | None = None) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name}={raw!r} is not an integer") from None
    if value < 1 or (upper is not None and value > upper):
        raise ValueError(f"{name}={raw!r} is out of range")
    return value


def gunicorn_command(port: int, workers: int, timeout: int) -> list[str]:
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
    try:
        port = _positive_int("PORT", 8080, upper=65535)
        workers = _positive_int("WEB_CONCURRENCY", 2)
        timeout = _positive_int("GUNICORN_TIMEOUT", 60)
    except ValueError as e:
        print(f"[start] {e}", flush=True)
        sys.exit(1)

    from scripts.release import run_release

    expire = (os.environ.get("RELEASE_EXPIRE_SUBSCRIPTIONS") or "").strip().lower() in ("1", "true", "yes")
    try:
        run_release(expire=expire)
    except Exception as e:
        print(f"[start] release failed: {e}", flush=True)
        sys.exit(1)

    cmd = gunicorn_command(port, workers, timeout)
    print(f"[start] {' '.join(cmd)}", flush=True)
    # gunicorn replaces this process and becomes PID 1
    os.execvp(cmd[0], cmd)


if __name__ == "__main__":
    main()
