from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from sqlalchemy.exc import DisconnectionError, OperationalError
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from chatcore.api.v1.router import api_router
from chatcore.core.errors import TransientError, add_exception_handlers, error_response, success_response
from chatcore.core.logging import configure_logging
from chatcore.core.settings import Settings, get_settings
from chatcore.db.session import init_db, open_session
from chatcore.realtime import FeedHub, RealtimeDispatcher, RealtimePublisher

settings = get_settings()
configure_logging(debug=settings.debug, per_event_debug=settings.log_feed_events)
logger = logging.getLogger(__name__)


def build_realtime(config: Settings) -> tuple[FeedHub, RealtimeDispatcher]:
    """Wire the outbox dispatcher to an in-process feed hub."""
    hub = FeedHub(max_pending=config.feed_queue_size)
    dispatcher = RealtimeDispatcher(
        publisher=RealtimePublisher(hub),
        session_factory=open_session,
        poll_interval_sec=config.realtime_dispatcher_poll_ms / 1000.0,
        batch_size=config.realtime_dispatcher_batch_size,
    )
    return hub, dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup started")
    init_db()
    app.state.feed_hub, app.state.realtime_dispatcher = build_realtime(settings)
    if settings.realtime_dispatcher_enabled:
        await app.state.realtime_dispatcher.start()
    else:
        logger.info("Realtime dispatcher disabled; outbox rows stay queued")
    logger.info("Application startup completed")
    try:
        yield
    finally:
        await app.state.realtime_dispatcher.stop()
        app.state.feed_hub.close()
        logger.info("Application shutdown completed")


async def _log_request(request: Request, call_next) -> Response:
    start = perf_counter()
    response = await call_next(request)
    logger.debug(
        "HTTP request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        (perf_counter() - start) * 1000,
    )
    return response


async def _store_unavailable(_: Request, exc: Exception):
    logger.warning("Store unavailable error=%s", exc)
    return error_response(
        status_code=TransientError.status_code,
        code=TransientError.code,
        message=TransientError.default_message,
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=settings.cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        ],
    )
    if settings.debug:
        app.middleware("http")(_log_request)

    add_exception_handlers(app)
    app.add_exception_handler(OperationalError, _store_unavailable)
    app.add_exception_handler(DisconnectionError, _store_unavailable)
    app.include_router(api_router, prefix=settings.api_v1_prefix)
    logger.debug("App created api_prefix=%s cors_origins=%s", settings.api_v1_prefix, settings.cors_origins)

    @app.get("/health")
    def health_check(request: Request):
        dispatcher = getattr(request.app.state, "realtime_dispatcher", None)
        hub = getattr(request.app.state, "feed_hub", None)
        return success_response(
            {
                "ok": True,
                "dispatcher_running": bool(dispatcher and dispatcher.running),
                "feed_subscriptions": hub.subscription_count if hub is not None else 0,
            }
        )

    return app


app = create_app()
