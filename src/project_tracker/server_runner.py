"""Helpers to launch the local HTTP API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .config import TrackerSettings
from .controller import ActivityController
from .db import SqliteGateway
from .paths import get_log_path, resolve_db_path
from .webapp import create_app

logger = logging.getLogger(__name__)


def _attach_log_file() -> None:
    handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.getLogger("project_tracker").addHandler(handler)


def run_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    idle_minutes: Optional[float] = None,
    log_level: str = "info",
    log_to_file: bool = True,
) -> None:
    """Restore the tracker from ``db_path`` and serve it until interrupted.

    ``idle_minutes`` overrides the stored inactivity threshold and derives
    the sampling interval from it.
    """
    if log_to_file:
        _attach_log_file()

    gateway = SqliteGateway.open(resolve_db_path(db_path), check_same_thread=False)
    try:
        controller = ActivityController.from_gateway(gateway)
        if idle_minutes is not None:
            tuning = TrackerSettings.from_intervals(idle_minutes)
            controller.settings.inactivity_threshold = tuning.inactivity_threshold
            controller.settings.sample_interval = tuning.sample_interval

        logger.info("Serving project tracker on http://%s:%d", host, port)
        logging.getLogger("uvicorn.error").setLevel(log_level.upper())
        uvicorn.run(create_app(controller=controller), host=host, port=port, log_level=log_level)
    finally:
        gateway.close()
