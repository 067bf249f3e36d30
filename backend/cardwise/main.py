import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardwise.config import settings
from cardwise.errors import CardWiseError, ValidationError

# ─── Logging setup (file + console) ───
_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_LOG_DIR.mkdir(exist_ok=True)

_log_level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(),
        RotatingFileHandler(
            _LOG_DIR / "cardwise.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        ),
    ],
)

# Quiet noisy libraries
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

from cardwise.routers import chat, providers, search  # noqa: E402
from cardwise.services.cache_service import cache_service  # noqa: E402
from cardwise.services.rate_limiter import RedisRateLimiter, chat_rate_limiter, search_rate_limiter  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"CardWise starting (default provider: {settings.ai_provider})")
    yield

    # Shutdown
    await cache_service.close()
    for limiter in (chat_rate_limiter, search_rate_limiter):
        if isinstance(limiter, RedisRateLimiter):
            await limiter.close()
    logger.info("Redis connections closed")


app = FastAPI(
    title="CardWise",
    description="AI credit card recommendations",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-AI-Provider", "X-Response-Time", "X-Fallback-Used", "X-Original-Provider"],
)


@app.exception_handler(CardWiseError)
async def cardwise_error_handler(request: Request, exc: CardWiseError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    message = first.get("msg", "Invalid request").removeprefix("Value error, ")
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    error = ValidationError(message, {"field": field} if field else {})
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    error = CardWiseError("An unexpected error occurred. Please try again.")
    return JSONResponse(status_code=500, content=error.to_payload())


app.include_router(chat.router, prefix="/api", tags=["chat"])
app.include_router(search.router, prefix="/api/search", tags=["search"])
app.include_router(providers.router, prefix="/api/providers", tags=["providers"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "cardwise"}
