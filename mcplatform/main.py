import os
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from mcplatform import __version__, dependencies
from mcplatform.config import proxy_settings
from mcplatform.database import AsyncSessionLocal, close_db_engine, init_db_engine
from mcplatform.logging_config import get_logger, setup_logging
from mcplatform.migration_check import ensure_migrations
from mcplatform.routers import oauth as oauth_router
from mcplatform.routers import well_known as well_known_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - connect/disconnect Redis and database."""
    setup_logging()

    try:
        proxy_settings.validate()
    except RuntimeError as e:
        logger.critical(f"Proxy configuration error: {e}")
        raise

    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379")
    dependencies.redis_client = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    try:
        await dependencies.redis_client.ping()
        logger.info(f"Connected to Redis at {redis_url}")
    except Exception as e:
        logger.warning(f"Could not connect to Redis: {e}")
        logger.warning("OAuth metadata documents will not be cached")
        await dependencies.redis_client.close()
        dependencies.redis_client = None

    try:
        await init_db_engine()
        logger.info("Database engine initialized")
    except Exception as e:
        logger.critical(f"Could not initialize database engine: {e}")
        raise

    try:
        ensure_migrations()
    except Exception as e:
        logger.critical(f"Migration check failed: {e}")
        raise

    yield

    try:
        await close_db_engine()
        logger.info("Database engine closed")
    except Exception as e:
        logger.error(f"Error closing database engine: {e}")

    if dependencies.redis_client:
        try:
            await dependencies.redis_client.close()
            logger.info("Disconnected from Redis")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")


app = FastAPI(
    title="MCPlatform OAuth Proxy",
    version=__version__,
    description="OAuth 2.0 authorization proxy for MCPlatform MCP servers",
    lifespan=lifespan,
)

# CORS
# CORS_ORIGINS env var controls allowed origins.
#   "*" or unset       -> any origin, credentials disabled
#   "http://a,https://b" -> explicit origin list, credentials enabled
_cors_origins_env = os.getenv("CORS_ORIGINS", "*").strip()
if _cors_origins_env in ("", "*"):
    _cors_origins = ["*"]
    _cors_credentials = False
else:
    _cors_origins = [o.strip() for o in _cors_origins_env.split(",") if o.strip()]
    _cors_credentials = True

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=_cors_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and answer with an OAuth-shaped 500."""
    logger.error(
        f"Unhandled exception in {request.method} {request.url.path}: "
        f"{type(exc).__name__}: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "server_error",
            "error_description": "Internal server error",
        },
    )


app.include_router(oauth_router.router, prefix="/oauth", tags=["oauth"])
app.include_router(well_known_router.router, prefix="/.well-known", tags=["discovery"])


@app.get("/health")
async def health():
    """Report database and Redis reachability."""
    database_ok = False
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        database_ok = True
    except Exception as e:
        logger.warning(f"Health check: database unreachable: {e}")

    redis_ok = False
    if dependencies.redis_client:
        try:
            redis_ok = bool(await dependencies.redis_client.ping())
        except Exception as e:
            logger.warning(f"Health check: Redis unreachable: {e}")

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "ok" if database_ok else "degraded",
            "database": database_ok,
            "redis": redis_ok,
            "version": __version__,
        },
    )
