"""
Cryptofolio HTTP service.

Wires the portfolio and metrics routers, maps domain errors onto status
codes and owns the lifetime of the database pool, the Redis client and
the shared price source.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cryptofolio.api.metrics import router as metrics_router
from cryptofolio.api.portfolio import router as portfolio_router
from cryptofolio.core.config import settings
from cryptofolio.core.database import close_db, init_db
from cryptofolio.core.exceptions import CryptofolioError
from cryptofolio.core.logging import setup_logging
from cryptofolio.core.metrics import metrics
from cryptofolio.core.redis import close_redis, get_async_redis
from cryptofolio.services.pricing import close_price_source

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await init_db()
    metrics.set_redis(await get_async_redis())
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    await close_price_source()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Crypto portfolio tracking: valuation, allocation and realized P&L",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CryptofolioError)
async def domain_error_handler(request: Request, exc: CryptofolioError) -> JSONResponse:
    """Report domain errors with their mapped status and a `detail` message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
async def health_check() -> dict:
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "price_cache": settings.PRICE_CACHE_ENABLED,
        "vs_currency": settings.VS_CURRENCY,
    }


@app.get("/")
async def root() -> dict[str, str]:
    return {"service": settings.APP_NAME, "docs": "/docs", "health": "/health"}


app.include_router(portfolio_router, prefix="/api/v1/portfolio", tags=["portfolio"])
app.include_router(metrics_router, prefix="/api/v1/metrics", tags=["metrics"])
