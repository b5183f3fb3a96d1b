#!/usr/bin/env python3
"""Deployment preflight: every engine imports and the download directory is writable."""
import importlib
import os
import sys
import tempfile

MODULES = (
    "txflow.core.poller",
    "txflow.core.otp",
    "txflow.core.downloader",
    "txflow.core.orchestrator",
    "txflow.store.session_repo",
)


def main() -> int:
    # Settings load without a .env file
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    failed = False
    for name in MODULES:
        try:
            importlib.import_module(name)
            print(f"import {name}: OK")
        except Exception as e:
            failed = True
            print(f"import {name}: FAILED ({type(e).__name__}: {e})")

    from txflow.settings import settings
    try:
        os.makedirs(settings.DOWNLOAD_DIR, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=settings.DOWNLOAD_DIR):
            pass
        print(f"download dir {settings.DOWNLOAD_DIR}: writable")
    except OSError as e:
        failed = True
        print(f"download dir {settings.DOWNLOAD_DIR}: FAILED ({e})")

    print("Preflight check FAILED." if failed else "Preflight check passed.")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
