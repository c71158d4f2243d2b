# wolmgr/core/state.py
"""
Process-wide handle on the configured task store.

The store itself (SQLite database or JSON document) is the only
authoritative state; this module just avoids re-opening it per request.
Routes receive it through the ``get_store`` dependency so tests can
override it.
"""

import logging
import threading
from typing import Optional

from wolmgr.core.config import config
from wolmgr.core.store import TaskStore, create_store

logger = logging.getLogger(__name__)

_store: Optional[TaskStore] = None
_store_lock = threading.Lock()


def get_store() -> TaskStore:
    """Return the configured store, creating it on first use."""
    global _store

    if _store is None:
        with _store_lock:
            if _store is None:
                logger.info(
                    f"Opening {config.STORE_BACKEND} task store at {config.STORE_PATH}"
                )
                _store = create_store(
                    config.STORE_BACKEND, config.STORE_PATH, config.STORE_LOCK_TIMEOUT
                )
    return _store


def reset_store() -> None:
    """Close and forget the current store (used on config reload and shutdown)."""
    global _store

    with _store_lock:
        if _store is not None:
            _store.close()
        _store = None
