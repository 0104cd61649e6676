"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from image_audit.api.routes import health_router, router
from image_audit.config import CORS_ORIGINS, OPTIMIZED_DIR, OPTIMIZED_URL_PREFIX, logger as config_logger
from image_audit.conversion.service import shutdown_conversion_scheduler
from image_audit.db import init_db

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    config_logger.info("Image audit API started")
    yield
    shutdown_conversion_scheduler()
    config_logger.info("Image audit API shutting down")


app = FastAPI(
    title="Image Audit API",
    description="Audit page or directory images for SEO issues and convert them to WebP in background jobs.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(health_router)
app.include_router(router)
app.mount(OPTIMIZED_URL_PREFIX, StaticFiles(directory=str(OPTIMIZED_DIR)), name="optimized")


if __name__ == "__main__":
    import uvicorn
    from image_audit.config import HOST, PORT
    uvicorn.run("image_audit.main:app", host=HOST, port=PORT, reload=True)
