"""Logging setup — called once by the CLI entry point.

Modules log through ``logging.getLogger(__name__)``; only the handlers are
decided here. The detached server has no terminal, so it logs to file only.
"""

from __future__ import annotations

import logging
from pathlib import Path

from agent_proxy.config import state_dir

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def log_path() -> Path:
    return state_dir() / "agent.log"


def configure_logging(
    debug: bool = False,
    log_file: Path | None = None,
    console: bool = True,
) -> None:
    handlers: list[logging.Handler] = []
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    if console:
        handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers or [logging.NullHandler()],
        force=True,
    )
    # The SDK's HTTP client is chatty at DEBUG.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
