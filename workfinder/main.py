from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from sqlalchemy import text
from sqlmodel import Session
import logging

# Load environment variables as early as possible
load_dotenv()

from .core.config import settings
from .database import create_db_and_tables, engine
from .exceptions import http_exception_handler, validation_exception_handler
from .infrastructure.cache.redis_cache import CacheService
from .infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter
from .infrastructure.telegram.bot_client import TelegramBotClient
from .middleware import (
    ErrorHandlingMiddleware,
    LoggingMiddleware,
    RateLimitMiddleware,
    RequestSizeLimitMiddleware,
    SecurityMiddleware,
)
from .routers import search_router, telegram_auth_router, telegram_webhook_router, withdraw_router
from .utils import utcnow

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    app.state.db_init_ok = True
    app.state.db_init_error = None
    try:
        create_db_and_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        # Do not crash the app; report via health endpoint
        app.state.db_init_ok = False
        app.state.db_init_error = str(e)
        logger.exception("Database initialization failed")

    cache = None
    if settings.REDIS_URL:
        cache = CacheService.from_url(settings.REDIS_URL)
        cache.connect()
    app.state.cache = cache
    app.state.rate_limiter = cache if cache is not None else InMemoryRateLimiter()

    bot = TelegramBotClient(
        token=settings.TELEGRAM_BOT_TOKEN,
        api_url=settings.TELEGRAM_API_URL,
        app_url=settings.PUBLIC_APP_URL,
        timeout_seconds=settings.TELEGRAM_SEND_TIMEOUT_SEC,
    )
    if not bot.configured:
        logger.warning("TELEGRAM_BOT_TOKEN is not set; login codes cannot be delivered")
    await bot.start()
    app.state.bot = bot

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await bot.close()
    if cache is not None:
        cache.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    docs_url=("/docs" if settings.DOCS_ENABLED else None),
    redoc_url=("/redoc" if settings.DOCS_ENABLED else None),
    openapi_url=("/openapi.json" if settings.DOCS_ENABLED else None)
)

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(SecurityMiddleware)
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=settings.GZIP_MIN_SIZE)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(telegram_auth_router.router)
app.include_router(telegram_webhook_router.router)
app.include_router(withdraw_router.router)
app.include_router(search_router.router)


@app.get("/health")
def health_check():
    db_ok = getattr(app.state, "db_init_ok", True)
    db_error = getattr(app.state, "db_init_error", None)
    if db_ok:
        try:
            with Session(engine) as session:
                session.execute(text("SELECT 1"))
        except Exception as e:
            db_ok, db_error = False, str(e)

    cache = getattr(app.state, "cache", None)
    bot = getattr(app.state, "bot", None)
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": utcnow().isoformat(),
        "database": {"ok": db_ok, "error": db_error},
        "cache": cache.get_stats() if cache is not None else {"connected": False, "backend": "memory"},
        "telegram": {"configured": bool(bot and bot.configured), "bot": settings.TELEGRAM_BOT_USERNAME},
    }
