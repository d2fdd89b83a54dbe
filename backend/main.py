"""Explanation proxy FastAPI application entry point."""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from backend.config import load_settings
from backend.routers import explain
from backend.services.model_client import create_model_client

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    # Raises ConfigurationError, which aborts startup before serving requests
    settings = load_settings()
    app.state.settings = settings
    app.state.model_client = create_model_client(settings)

    try:
        from observability.tracing import setup_tracing
        setup_tracing(
            service_name="explain-proxy",
            langfuse_host=settings.langfuse_host,
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            attributes={
                "explain.provider": settings.provider,
                "explain.model": settings.model,
            },
        )
    except Exception as e:
        logger.warning(f"Tracing not configured: {e}")

    logger.info("Explanation proxy started")
    yield

    from observability.tracing import shutdown_tracing
    shutdown_tracing()
    logger.info("Explanation proxy shutting down")


app = FastAPI(
    title="Explain Like I Am: Explanation Proxy",
    description=(
        "Explains a topic at a chosen comprehension level by relaying a "
        "language model's answer, whole or as an event stream."
    ),
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = explain.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def invalid_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are client errors like any other: 400 with a reason."""
    logger.info(f"Invalid request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "invalid request"})


# CORS: allow the local dev frontend and any configured FRONTEND_URL
allowed_origins = [
    "http://localhost:3000",
    os.environ.get("FRONTEND_URL", "http://localhost:3000"),
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(explain.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict:
    return {
        "service": "explain-proxy",
        "explain": "/explain",
        "docs": "/docs",
        "health": "/health",
    }
