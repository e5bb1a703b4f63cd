"""
FastAPI main application.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Tuple

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from config import settings
from src.utils import get_logger, registry
from src.models.schemas import HealthResponse, ErrorResponse, ErrorDetail
from src.api.middleware import LoggingMiddleware
from src.api.routes import edit

from design_grounding import __version__
from design_grounding.agents.edit_orchestrator_agent import EditOrchestratorAgent
from design_grounding.core.config import load_config
from design_grounding.core.exceptions import GroundingError
from design_grounding.core.llm_client import LLMClient
from design_grounding.services.context_store_service import ContextStoreService
from design_grounding.services.image_analysis_service import ImageAnalysisService
from design_grounding.services.similarity_backends import create_backend

logger = get_logger(__name__)


def build_orchestrator() -> Tuple[EditOrchestratorAgent, List[Any]]:
    """
    Wire the orchestrator from environment settings and the grounding policy.

    Returns the orchestrator and the collaborators the app must close.
    """
    config = load_config(settings.grounding_config_path)
    config.model.primary_model = settings.llm_model
    config.model.timeout_seconds = settings.llm_timeout
    config.model.max_tokens = settings.llm_max_tokens
    config.model.temperature = settings.llm_temperature
    config.context_store.retention = settings.context_retention

    llm_client = LLMClient(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        timeout=settings.llm_timeout,
    )
    store = ContextStoreService(
        config.context_store,
        backend=create_backend(settings.similarity_backend, settings.database_url),
    )
    http_client = httpx.AsyncClient(timeout=settings.image_fetch_timeout)
    analysis_service = ImageAnalysisService(config.analyzer, http_client=http_client)
    orchestrator = EditOrchestratorAgent(
        llm_client=llm_client,
        analysis_service=analysis_service,
        context_store=store,
        config=config,
    )
    return orchestrator, [analysis_service, store, llm_client, http_client]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    logger.info(
        "app.startup",
        environment=settings.environment,
        version=__version__,
        similarity_backend=settings.similarity_backend,
    )

    orchestrator, collaborators = build_orchestrator()
    app.state.orchestrator = orchestrator

    if not orchestrator.is_ready():
        logger.warning("app.startup.llm_not_configured")

    yield

    app.state.orchestrator = None
    await orchestrator.close()
    for collaborator in collaborators:
        if isinstance(collaborator, httpx.AsyncClient):
            await collaborator.aclose()
        else:
            await collaborator.close()
    logger.info("app.shutdown")


# Create FastAPI app
app = FastAPI(
    title="Design Grounding API",
    description="Ground-truth validated image editing with tool-calling models",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request/response logging middleware with correlation ID tracking
app.add_middleware(LoggingMiddleware)


# Exception handlers
@app.exception_handler(GroundingError)
async def grounding_exception_handler(request: Request, exc: GroundingError) -> JSONResponse:
    """Map pipeline errors to their HTTP status and error code."""
    logger.warning(
        "api.grounding_error",
        error_code=exc.error_code,
        error=exc.message,
        path=request.url.path,
    )

    error_response = ErrorResponse(
        error=ErrorDetail(code=exc.error_code, message=exc.message, details=exc.details or None),
        request_id=request.headers.get("X-Request-ID"),
    )
    return JSONResponse(
        status_code=exc.http_status,
        content=error_response.model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True,
    )

    error_response = ErrorResponse(
        error=ErrorDetail(
            code="INTERNAL_ERROR",
            message="An internal error occurred",
            details={"type": type(exc).__name__} if settings.environment != "production" else None,
        )
    )

    return JSONResponse(
        status_code=500,
        content=error_response.model_dump(mode="json"),
    )


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint with real service checks."""
    from src.utils.health_check import perform_health_checks

    orchestrator = getattr(request.app.state, "orchestrator", None)
    store = orchestrator.context_store if orchestrator else None
    checks = await perform_health_checks(store)

    services = {
        service: result.get("status", False)
        for service, result in checks.items()
    }

    all_healthy = all(services.values())
    status = "healthy" if all_healthy else "degraded"

    details = {
        service: result.get("message") or result.get("error", "Unknown")
        for service, result in checks.items()
    }

    logger.info(f"Health check: {status}", **details)

    return HealthResponse(
        status=status,
        version=__version__,
        services=services,
        llm_configured=orchestrator.is_ready() if orchestrator else False,
        similarity_backend=store.backend.name if store else settings.similarity_backend,
    )


# Metrics endpoint
@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    if not settings.enable_metrics:
        return JSONResponse(
            status_code=404,
            content={"error": "Metrics are disabled"},
        )

    data = generate_latest(registry)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


# Include routers
app.include_router(edit.router, prefix="/edit", tags=["Edit"])


# Root endpoint
@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Design Grounding API",
        "version": __version__,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
