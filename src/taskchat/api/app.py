"""
taskchat FastAPI Application.

Serves per-task conversation threads over HTTP and pushes live updates,
unread counters and presence over a WebSocket.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskchat import __version__
from taskchat.api.routes import messages, task_history, templates, users, ws
from taskchat.config import settings
from taskchat.logging_config import setup_logging
from taskchat.startup import run_all_startup_checks
from taskchat.threads.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Runs startup checks before the application starts serving requests.
    Ensures critical dependencies (database, migrations) are available.
    """
    # Initialize logging first
    setup_logging(context="api")

    # Startup: Run all dependency checks
    logger.info("Running startup checks...")
    run_all_startup_checks()
    logger.info("✓ Startup checks passed")

    logger.info("Application startup complete")

    yield

    logger.info(
        "Application shutdown (%d live connection(s) dropped)",
        app.state.broadcaster.connection_count,
    )


app = FastAPI(
    lifespan=lifespan,
    title="taskchat API",
    description="Threaded task conversations with live updates",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# One registry per process; connections are not shared across workers
app.state.broadcaster = Broadcaster(max_connections=settings.ws_max_connections)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint - API health check."""
    return {
        "status": "ok",
        "message": "taskchat API is running",
        "version": __version__,
    }


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    from taskchat.db.connection import check_connection

    db_status = "healthy" if check_connection() else "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
    }


@app.get("/ready")
async def ready():
    """
    Readiness probe endpoint for Kubernetes/load balancers.

    Returns 200 OK if ready to serve requests, 503 Service Unavailable otherwise.
    Includes startup metrics and current health status.
    """
    from fastapi import status
    from fastapi.responses import JSONResponse

    from taskchat.startup import check_readiness

    is_ready, details = check_readiness()
    details["connections"] = app.state.broadcaster.connection_count

    if not is_ready:
        return JSONResponse(
            content=details,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return details


app.include_router(messages.router, prefix="/messages", tags=["messages"])
app.include_router(task_history.router, prefix="/task-history", tags=["task-history"])
app.include_router(
    templates.router, prefix="/auto-message-template", tags=["templates"]
)
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(ws.router, tags=["ws"])
