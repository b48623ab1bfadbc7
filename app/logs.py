import json
import logging
import os
from typing import Any

_ROOT_LOGGER = "salesai.session"


def _level_from_env() -> int:
    try:
        name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        return getattr(logging, name, logging.INFO)
    except Exception:
        return logging.INFO


def get_logger(name: str = "") -> logging.Logger:
    """Return a logger under the service tree.

    The tree root honours LOG_LEVEL, owns a single StreamHandler emitting the
    bare message (callers log JSON), and does not propagate so Uvicorn's root
    handlers do not print every line twice.
    """
    root = logging.getLogger(_ROOT_LOGGER)
    if not getattr(root, "_salesai_configured", False):
        lvl = _level_from_env()
        root.setLevel(lvl)
        if not root.handlers:
            h = logging.StreamHandler()
            h.setLevel(lvl)
            h.setFormatter(logging.Formatter("%(message)s"))
            root.addHandler(h)
        root.propagate = False
        root._salesai_configured = True  # type: ignore[attr-defined]
    if not name:
        return root
    return root.getChild(name)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    # Logging must never fail the caller
    try:
        payload = {"event": event}
        payload.update({k: v for k, v in fields.items() if v is not None})
        logger.log(level, json.dumps(payload, default=str))
    except Exception:
        pass
