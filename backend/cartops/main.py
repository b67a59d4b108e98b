"""CARTOPS - FastAPI Application.

Cart Fulfillment & Bottle Reclamation Engine
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cartops import __version__
from cartops.api import fulfillment
from cartops.core.config import settings

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.APP_NAME,
    description="CARTOPS - Cart fulfillment, missing-items ledger and bottle reclamation",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Dashboard is served from a different origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(fulfillment.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": settings.APP_NAME,
        "version": __version__,
        "status": "operational",
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "persistence": settings.PERSISTENCE_BACKEND,
        "gemini": "configured" if settings.GEMINI_API_KEY else "mock",
    }
