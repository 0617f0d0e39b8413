"""ASGI entry point: ``uvicorn bizdata.main:app``."""

import logging

from .api import create_app
from .config import get_settings

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app(settings)
