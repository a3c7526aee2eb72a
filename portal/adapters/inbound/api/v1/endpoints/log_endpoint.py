# portal/adapters/inbound/api/v1/endpoints/log_endpoint.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi_pagination import Params
from sqlalchemy.ext.asyncio import AsyncSession

from portal.adapters.inbound.api.deps import (
    get_optional_claims,
    get_session,
    get_structured_logger,
    require_role,
)
from portal.application.dtos.log_dto import (
    AcceptedResponse,
    ClientErrorLog,
    ClientMessageLog,
    LogPage,
)
from portal.application.services.structured_logger import StructuredLogger
from portal.application.use_cases.log_use_cases import AsyncLogService
from portal.domain.models.claims_domain_model import AuthClaims, Role
from portal.domain.models.log_domain_model import LogLevel
from portal.shared.middleware import AuthMode, pipeline_route
from portal.shared.utils.pagination import pagination_params
from portal.shared.utils.request_info import client_ip, user_agent

logger = logging.getLogger(__name__)

admin_router = APIRouter(route_class=pipeline_route(AuthMode.REQUIRED, "default"))
ingest_router = APIRouter(route_class=pipeline_route(AuthMode.OPTIONAL, "default"))


@admin_router.get(
    "/logs",
    response_model=LogPage,
    summary="List log records",
    description="Paginated log records, newest first. Admin only.",
    responses={
        403: {
            "description": "Caller is not an admin",
            "content": {
                "application/json": {
                    "example": {"detail": "Permission denied (required role: admin)", "code": "PERMISSION_DENIED"}
                }
            }
        }
    }
)
async def list_logs(
        level: Optional[LogLevel] = Query(None, description="Only records at this level"),
        params: Params = Depends(pagination_params),
        db: AsyncSession = Depends(get_session),
        structured_logger: StructuredLogger = Depends(get_structured_logger),
        _: AuthClaims = Depends(require_role(Role.ADMIN)),
):
    service = AsyncLogService(structured_logger, db)
    return await service.list_logs(params, level)


@ingest_router.post(
    "/log/error",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Report a client-side error",
)
async def log_client_error(
        payload: ClientErrorLog,
        request: Request,
        claims: Optional[AuthClaims] = Depends(get_optional_claims),
        structured_logger: StructuredLogger = Depends(get_structured_logger),
):
    service = AsyncLogService(structured_logger)
    context = service.client_context(claims, client_ip(request), user_agent(request))
    await service.record_client_error(payload, context)
    return AcceptedResponse()


@ingest_router.post(
    "/log/message",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Report a client-side log message",
)
async def log_client_message(
        payload: ClientMessageLog,
        request: Request,
        claims: Optional[AuthClaims] = Depends(get_optional_claims),
        structured_logger: StructuredLogger = Depends(get_structured_logger),
):
    service = AsyncLogService(structured_logger)
    context = service.client_context(claims, client_ip(request), user_agent(request))
    await service.record_client_message(payload, context)
    return AcceptedResponse()
