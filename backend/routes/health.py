"""
Health check endpoint.
"""
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from deps import Services, get_services
from domain.errors import PersistenceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(services: Services = Depends(get_services)):
    """Health check — verifies the document store is reachable."""
    try:
        await services.store.ping()
        return {
            "status": "healthy",
            "database_connected": True,
            "mail_backend": getattr(services.notifier.transport, "name", "unknown"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except PersistenceError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database_connected": False,
                "error": str(e),
            },
        )
