# portal/adapters/inbound/api/v1/endpoints/health_endpoint.py

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from portal.adapters.outbound.persistence.database import ping_database

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/health",
    summary="Health check",
    description="Probes the database and the shared counter store.",
)
async def health(request: Request):
    state = request.app.state
    database_ok = await ping_database(state.session_factory)
    counter_store_ok = await state.counter_store.ping()

    status_text = "healthy" if database_ok and counter_store_ok else "degraded"
    if status_text != "healthy":
        logger.warning(f"Health check degraded | database={database_ok} counter_store={counter_store_ok}")

    return {
        "status": status_text,
        "service": state.settings.SERVICE_NAME,
        "environment": state.settings.ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "up" if database_ok else "down",
            "counter_store": "up" if counter_store_ok else "down",
        },
    }
