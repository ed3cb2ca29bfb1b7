"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from trackdash.api import router
from trackdash.config import settings
from trackdash.db import init_db
from trackdash.errors import OrderNotFoundError, StoreError
from trackdash.services.carrier_loader import carrier_loader

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting %s...", settings.app_name)
    await init_db()
    carrier_loader.load_all()
    logger.info("Loaded %d tracking providers", len(carrier_loader.list_carriers()))

    yield

    logger.info("Shutting down...")
    await carrier_loader.aclose()


app = FastAPI(
    title=settings.app_name,
    description="Logistics tracking dashboard backend",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=503, content={"detail": f"Order store unavailable: {exc}"})


@app.exception_handler(OrderNotFoundError)
async def not_found_handler(request: Request, exc: OrderNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# Include routes
app.include_router(router)


@app.get("/api/health")
async def health():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "trackdash.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
