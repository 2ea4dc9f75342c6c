import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.api.router import api_router
from app.core.config import get_settings
from app.core.db import close_engine, get_session_factory, init_engine, initialize_database
from app.core.logging import configure_logging
from app.infra.db.store import SqlChatStore
from app.infra.realtime import ChangeFeed, LoggingChatTransport
from app.infra.store import InMemoryChatStore
from app.services.engine import build_engine, run_request_sweeper

settings = get_settings()
settings.validate_security_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    current = get_settings()
    changes = ChangeFeed()
    db_engine = None

    # Initialize infrastructure
    if current.store_backend == "memory":
        store = InMemoryChatStore(changes=changes)
    else:
        db_engine = init_engine()
        await initialize_database(db_engine)
        store = SqlChatStore(
            get_session_factory(),
            changes=changes,
            read_retries=current.store_read_retries,
            retry_delay_seconds=current.store_retry_delay_seconds,
        )

    engine = build_engine(store, changes, current, transport=LoggingChatTransport())
    app.state.engine = engine
    app.state.operator_connections = {}
    await engine.registry.mark_all_offline()
    logger.info("Routing engine started with %s store", current.store_backend)

    sweeper = asyncio.create_task(
        run_request_sweeper(engine, current.request_sweep_interval_seconds)
    )

    yield

    # Graceful shutdown
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    app.state.engine = None
    if db_engine is not None:
        await close_engine(db_engine)


app = FastAPI(
    title="Chat Routing Engine API",
    version="0.1.0",
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
    lifespan=lifespan,
)

if settings.trusted_hosts:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.trusted_hosts,
    )

if settings.force_https:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "X-Operator-Id", "X-Customer-Id"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault(
        "Referrer-Policy",
        "strict-origin-when-cross-origin",
    )
    if settings.force_https:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=31536000; includeSubDomains",
        )
    return response


app.include_router(api_router, prefix="/api")


@app.get("/", tags=["meta"])
async def root() -> dict[str, str]:
    return {"service": "chat-routing-engine", "status": "ok"}
