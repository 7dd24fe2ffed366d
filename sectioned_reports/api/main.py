"""
FastAPI application for the Sectioned Report Builder.

Provides REST API endpoints for browsing industry templates, generating
sectioned reports, exporting them and browsing report history.

Usage:
    uvicorn sectioned_reports.api.main:app --reload --port 8000
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config.settings import get_settings
from ..db import initialize_database
from .routes import (
    templates_router,
    generate_router,
    export_router,
    history_router,
    sections_router,
)

app = FastAPI(
    title="Sectioned Report Builder API",
    description="API for generating industry reports section by section",
    version="0.1.0",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
    openapi_url="/api/v1/openapi.json",
)

# CORS middleware
cors_origins = [
    origin.strip()
    for origin in get_settings().CORS_ALLOW_ORIGINS.split(",")
    if origin.strip()
]
if not cors_origins:
    cors_origins = ["http://localhost:5173", "http://127.0.0.1:5173"]

# Browsers reject wildcard origins when credentials are enabled.
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _bootstrap_database() -> None:
    """Initialize the report history schema when needed."""
    initialize_database()


@app.get("/health", tags=["Health"])
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers with /api/v1 prefix
app.include_router(templates_router, prefix="/api/v1")
app.include_router(generate_router, prefix="/api/v1")
app.include_router(export_router, prefix="/api/v1")
app.include_router(history_router, prefix="/api/v1")
app.include_router(sections_router, prefix="/api/v1")
