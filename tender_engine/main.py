from typing import Optional

from fastapi import FastAPI

from tender_engine.api.v1.router import v1_router
from tender_engine.core.config import get_settings
from tender_engine.core.events import EventSink, LoggingEventSink
from tender_engine.core.logging import configure_logging
from tender_engine.core.middleware import RequestIdMiddleware
from tender_engine.services.marketplace import MarketplaceFacade


def create_app(event_sink: Optional[EventSink] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    # one facade per app; the sink receives committed domain events
    app.state.marketplace = MarketplaceFacade(event_sink or LoggingEventSink())

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
