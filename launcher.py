# launcher.py
"""
Start the Wake-on-LAN task API with Uvicorn (dev) or Gunicorn (prod).

Before any server process is spawned the configured task store is opened
once: the schema gets created or migrated in a single process instead of
racing across workers, and an unreadable store stops the launch with a
clear message. ``--check`` runs that preflight alone.
"""

import argparse
import logging
import os
import signal
import subprocess
import sys
from collections import Counter
from typing import Dict, List, Optional

from wolmgr.core.config import config
from wolmgr.core.errors import StoreError
from wolmgr.core.setup_logging import get_uvicorn_log_config, setup_default_logging
from wolmgr.core.store import create_store


def reload_config(signum, frame):
    """SIGHUP: re-read .env in the launcher process."""
    from wolmgr.core import config as config_module

    config_module.reload_config_env()

    print("Configuration reloaded after SIGHUP signal.")


def check_store() -> Optional[Dict[str, int]]:
    """
    Open the configured store and count its tasks by status.

    Returns:
        Optional[Dict[str, int]]: Task count per status, or None if the store is unusable
    """
    try:
        store = create_store(config.STORE_BACKEND, config.STORE_PATH, config.STORE_LOCK_TIMEOUT)
        try:
            tasks = store.list_tasks()
        finally:
            store.close()
    except (StoreError, ValueError) as exc:
        print(f"Task store {config.STORE_BACKEND} ({config.STORE_PATH}) is unusable: {exc}")
        return None

    counts = dict(Counter(task.status.value for task in tasks))
    summary = ", ".join(f"{status}={count}" for status, count in sorted(counts.items())) or "empty"
    print(f"Task store {config.STORE_BACKEND} ({config.STORE_PATH}): {summary}")
    if counts.get("processing") and config.PROCESSING_TIMEOUT_SECONDS == 0:
        print(
            "WARNING: tasks are in processing and PROCESSING_TIMEOUT_SECONDS=0, "
            "they will not be recovered if their agent is gone"
        )
    return counts


def run_dev():
    """Uvicorn with auto-reload, single worker."""
    setup_default_logging(json_format=False, log_level=logging.INFO)

    import uvicorn

    print(f"[DEV] Starting Wake-on-LAN task API on {config.SERVER_HOST}:{config.SERVER_PORT}")
    print(f"API Documentation: {config.SERVER_URL}/docs")

    uvicorn.run(
        "wolmgr.main:app",
        host=config.SERVER_HOST,
        port=config.SERVER_PORT,
        reload=True,
        log_config=get_uvicorn_log_config(json_format=False),
        access_log=True,
        workers=1,
    )


def gunicorn_command(workers: int) -> List[str]:
    return [
        "gunicorn",
        "wolmgr.main:app",
        "-k",
        "uvicorn.workers.UvicornWorker",
        "-b",
        f"{config.SERVER_HOST}:{config.SERVER_PORT}",
        "--workers",
        str(workers),
        "--access-logfile",
        "-",
        "--error-logfile",
        "-",
    ]


def run_prod():
    """Gunicorn with Uvicorn workers; every worker shares the same store."""
    workers = int(os.getenv("UVICORN_WORKERS", config.UVICORN_WORKERS))

    print(
        f"[PROD] Launching Gunicorn with {workers} workers on {config.SERVER_HOST}:{config.SERVER_PORT}"
    )
    subprocess.run(gunicorn_command(workers), check=True)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point: store preflight, then Uvicorn in development or Gunicorn in production.

    Returns:
        int: Process exit status
    """
    parser = argparse.ArgumentParser(description="Wake-on-LAN task API launcher")
    parser.add_argument(
        "--check", action="store_true", help="Only check that the task store opens, then exit"
    )
    args = parser.parse_args(argv)

    if check_store() is None:
        return 1
    if args.check:
        return 0

    signal.signal(signal.SIGHUP, reload_config)

    env = os.getenv("ENVIRONMENT", config.ENVIRONMENT).lower()
    if env == "production":
        run_prod()
    else:
        run_dev()
    return 0


if __name__ == "__main__":
    sys.exit(main())
