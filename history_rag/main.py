"""
FastAPI application for the browser history RAG service.

Indexes visited pages (content, topic, domain) into a Qdrant collection and
serves filtered / semantic queries, statistics and deletion per user.

Features:
- Async lifespan building the history service from environment configuration
- Global error handlers with structured logging
- CORS configuration for the browser extension and dashboard
- Per-IP rate limiting on all history endpoints

Endpoints:
- POST /api/history: Store a visited page
- POST /api/history/bulk: Store many visited pages
- POST /api/history/query: Query history
- GET /api/history/stats/{user_id}: History statistics
- DELETE /api/history/{user_id}: Delete history
- GET /api/history/health: Index health
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()
import sys
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from history_rag.api.routes.history import router as history_router
from history_rag.services.history_service import build_history_service

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


# ============================================================================
# Application Lifespan Management
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Async lifespan context manager for application startup/shutdown.

    Startup:
    1. Build the history service (Qdrant store, DeepInfra embedder,
       content extractor, OpenRouter topic classifier)
    2. Get or create the history collection

    A collection that cannot be initialized at startup is not fatal: the
    server keeps serving and the service retries on the first request.
    A service that cannot be built at all leaves the history routes
    answering 503.
    """
    logger.info("🚀 Starting Browser History RAG API...")

    app.state.history_service = None
    try:
        history_service = build_history_service()
        app.state.history_service = history_service
        await history_service.initialize()
        logger.info("✅ Browser history service initialized")
    except Exception as e:
        logger.warning(f"Browser history service initialization failed (non-fatal): {e}")

    if not os.getenv("OPENROUTER_API_KEY"):
        logger.warning("OPENROUTER_API_KEY not set, all pages will be classified as 'Uncategorized'")

    logger.info("✅ Browser History RAG API ready to serve requests")

    yield

    logger.info("🛑 Shutting down Browser History RAG API...")

    history_service = app.state.history_service
    if history_service is not None:
        try:
            history_service.store.client.close()
            logger.info("✅ Qdrant client closed")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="Browser History RAG API",
    description="Semantic indexing and retrieval of browser history. "
    "Powered by Qdrant, DeepInfra embeddings and OpenRouter topic classification.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ============================================================================
# Security Headers Middleware
# ============================================================================


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add OWASP-recommended security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        return response


app.add_middleware(SecurityHeadersMiddleware)


# ============================================================================
# CORS Middleware
# ============================================================================

# Override with CORS_ORIGINS (comma-separated); extension origins must be listed explicitly
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:8000"

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept"],
)


# ============================================================================
# Global Exception Handlers
# ============================================================================


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors with structured response."""
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError):
    """Validation errors without the non-serializable `ctx` / `input` payloads."""
    return [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with structured response."""
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    else:
        logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")

    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": exc.__class__.__name__, "message": str(exc.detail)}

    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with structured response."""
    logger.exception(f"Unhandled {exc.__class__.__name__} on {request.url.path}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred.",
        },
    )


# ============================================================================
# Route Registration
# ============================================================================

app.include_router(history_router)


# ============================================================================
# Root Endpoint
# ============================================================================


@app.get(
    "/",
    summary="API Root",
    description="Root endpoint with API information and links to documentation.",
)
async def root():
    """Return API information and navigation links."""
    return {
        "service": "Browser History RAG API",
        "version": "1.0.0",
        "status": "operational",
        "documentation": {"interactive": "/docs", "redoc": "/redoc", "openapi": "/openapi.json"},
        "endpoints": {
            "store": "POST /api/history",
            "bulk": "POST /api/history/bulk",
            "query": "POST /api/history/query",
            "stats": "GET /api/history/stats/{user_id}",
            "delete": "DELETE /api/history/{user_id}",
            "health": "GET /api/history/health",
        },
    }


# ============================================================================
# Application Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    reload = os.getenv("API_RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload={reload})")

    uvicorn.run("history_rag.main:app", host=host, port=port, reload=reload, log_level="info")
