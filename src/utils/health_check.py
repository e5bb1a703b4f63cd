"""
Health check utilities for verifying service dependencies.
"""
import asyncio
from typing import Any, Dict, Optional

from config import settings
from src.utils import get_logger
from design_grounding.core.config import get_config
from design_grounding.core.exceptions import GroundingConfigError
from design_grounding.services.context_store_service import ContextStoreService
from design_grounding.tools.registry import get_registry

logger = get_logger(__name__)


async def check_openrouter_api() -> Dict[str, Any]:
    """Check that an OpenRouter API key is configured."""
    if not settings.openrouter_api_key:
        return {"status": False, "error": "API key not configured"}

    if len(settings.openrouter_api_key) < 10:
        return {"status": False, "error": "API key appears invalid"}

    return {"status": True, "message": "API key configured"}


async def check_grounding_policy() -> Dict[str, Any]:
    """Check that the grounding policy loads."""
    try:
        config = get_config()
    except GroundingConfigError as e:
        return {"status": False, "error": e.message}
    return {
        "status": True,
        "message": f"Execution gate {config.context_store.execution_confidence_gate:g}",
    }


async def check_tool_registry() -> Dict[str, Any]:
    """Check that the image tools are registered."""
    count = len(get_registry())
    if count == 0:
        return {"status": False, "error": "No tools registered"}
    return {"status": True, "message": f"{count} tools registered"}


async def check_similarity_backend(store: Optional[ContextStoreService]) -> Dict[str, Any]:
    """
    Check the context store's similarity backend.

    A degraded store still serves turns, so it reports healthy with a note.
    """
    if store is None:
        return {"status": False, "error": "Context store not initialized"}

    if store.degraded:
        return {"status": True, "message": f"{store.backend.name} backend unavailable (degraded mode)"}

    try:
        total, successful = await store.backend.counts()
    except Exception as e:
        logger.error("health.similarity_backend.failed", error=str(e))
        return {"status": False, "error": str(e)}

    return {"status": True, "message": f"{store.backend.name}: {successful}/{total} successful executions"}


async def perform_health_checks(store: Optional[ContextStoreService] = None) -> Dict[str, Dict[str, Any]]:
    """
    Perform all health checks concurrently.

    Returns:
        Dictionary with health check results for each service
    """
    logger.info("Performing health checks")

    names = ["openrouter_api", "grounding_policy", "tool_registry", "similarity_backend"]
    results = await asyncio.gather(
        check_openrouter_api(),
        check_grounding_policy(),
        check_tool_registry(),
        check_similarity_backend(store),
        return_exceptions=True
    )

    checks = {
        name: result if not isinstance(result, Exception) else {"status": False, "error": str(result)}
        for name, result in zip(names, results)
    }

    all_healthy = all(check.get("status", False) for check in checks.values())

    logger.info(
        "Health checks completed",
        all_healthy=all_healthy,
        **{k: v.get("status") for k, v in checks.items()}
    )

    return checks
