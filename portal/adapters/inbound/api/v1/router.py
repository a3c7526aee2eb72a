# portal/adapters/inbound/api/v1/router.py

from fastapi import APIRouter
from portal.adapters.inbound.api.v1.endpoints import auth_endpoint, health_endpoint, log_endpoint

api_router = APIRouter()

api_router.include_router(health_endpoint.router, tags=["Health"])

# Auth routers (login is public, /me requires a token)
api_router.include_router(auth_endpoint.login_router, prefix="/auth", tags=["Auth"])
api_router.include_router(auth_endpoint.router, prefix="/auth", tags=["Auth"])

# Log routers (listing is admin only, ingestion accepts anonymous callers)
api_router.include_router(log_endpoint.admin_router, tags=["Logs"])
api_router.include_router(log_endpoint.ingest_router, tags=["Logs"])
