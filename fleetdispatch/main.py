"""
FastAPI application factory with New Relic APM, CORS, lifespan, and all routers.
"""
import logging
import os

# New Relic must be initialized BEFORE any other imports that it instruments.
if os.getenv("NEW_RELIC_LICENSE_KEY"):
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fleetdispatch.config import get_settings
from fleetdispatch.errors import DispatchError
from fleetdispatch.redis_client import get_redis, close_redis
from fleetdispatch.routers import auth, customers, drivers, geo, reports, trips
from fleetdispatch.services.store import DEFAULT_USERS, get_store

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    if settings.store_backend == "sql":
        from fleetdispatch.database import create_tables

        await create_tables()
    await get_store().seed_users(DEFAULT_USERS)
    await get_redis()          # warm up connection pool
    yield
    await close_redis()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Delivery trip dispatch: admin scheduling, driver lifecycle, payment capture",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain errors carry their own status code
@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url, exc)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check (no auth)
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Register routers
app.include_router(auth.router)
app.include_router(customers.router)
app.include_router(trips.router)
app.include_router(drivers.router)
app.include_router(geo.router)
app.include_router(reports.router)
