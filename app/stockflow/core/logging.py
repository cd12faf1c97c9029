from __future__ import annotations

import json
import logging

from app.stockflow.core.config import settings


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("stockflow").setLevel(logging.INFO)


def log_json(logger: logging.Logger, payload: dict) -> None:
    payload = {"app": settings.APP_NAME, **payload}
    logger.info(json.dumps(payload, ensure_ascii=False, default=str))
