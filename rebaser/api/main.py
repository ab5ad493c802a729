"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .dependencies import shutdown_orchestrator
from .routes import connections, replications

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Running jobs are cancelled and their sqlpackage processes terminated
    logger.info("API shutting down, cancelling running replications")
    shutdown_orchestrator()


app = FastAPI(
    title="Rebaser Replication API",
    description="API for SQL Server database replication jobs",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(connections.router, prefix="/api/connections", tags=["connections"])
app.include_router(replications.router, prefix="/api/replications", tags=["replications"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
