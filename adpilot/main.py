"""AdPilot — FastAPI Application Entry Point.

Publishes ad drafts to the Meta Marketing API.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adpilot.database import check_connection, init_db
from adpilot.scheduler.jobs import start_scheduler, stop_scheduler
from adpilot.api.publish_routes import router as publish_router
from adpilot.api.ads_routes import router as ads_router
from adpilot.core.logging import get_logger

logger = get_logger("main")

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 AdPilot starting up...")
    if check_connection():
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Database NOT connected, endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("AdPilot shut down")


app = FastAPI(
    title="AdPilot",
    description="Publish validated ad drafts to Meta: images, campaign, ad set, ad.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(publish_router)
app.include_router(ads_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "adpilot", "version": "1.0.0"}
