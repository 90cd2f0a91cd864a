"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from shopwatch.api.routes import dashboard
from shopwatch.config import settings
from shopwatch.db.session import init_db
from shopwatch.worker.scheduler import setup_scheduler
from shopwatch.worker.tasks import task_runner

# Configure structured logging
from shopwatch.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

# Global scheduler
scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global scheduler

    # Startup
    logger.info("Starting shopwatch...")

    await init_db()

    if not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set, notifications will be dropped")

    await task_runner.initialize()

    scheduler = setup_scheduler()
    scheduler.start()
    logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")

    if scheduler:
        scheduler.shutdown()

    await task_runner.close()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="shopwatch",
    description="Shop stock monitor and auto-buy scheduler",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(dashboard.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "bot_configured": bool(settings.telegram_bot_token)}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


def run():
    """Run the API and the background ticks with uvicorn."""
    uvicorn.run(
        "shopwatch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
