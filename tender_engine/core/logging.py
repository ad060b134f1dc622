import logging
import sys
from pythonjsonlogger import jsonlogger
from tender_engine.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """
    Structured (JSON) logging for the engine and the HTTP layer.

    Lifecycle services log transitions with `extra={...}` fields
    (tender_id, proposal_id, from_status, to_status, actor_id); the JSON
    formatter lifts those into top-level keys.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    fmt = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"app": settings.app_name, "env": settings.environment},
    )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    # SQL echo is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
