# portal/shared/middleware/exception_middleware.py

"""
Centralized rendering of domain exceptions.

Every ``PortalException`` becomes ``{"detail": ..., "code": ...}`` with the
exception's status code and headers. Handler faults arrive here as
``HandlerFaultException`` after the request pipeline has logged them.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from portal.adapters.configuration.config import Settings
from portal.domain.exceptions import PortalException

# Configure logger
logger = logging.getLogger(__name__)


def build_portal_exception_handler(settings: Settings):

    async def portal_exception_handler(request: Request, exc: PortalException) -> JSONResponse:
        detail = exc.detail
        if exc.status_code >= 500:
            logger.error(
                f"Server error: {exc.internal_code} | "
                f"Path: {request.url.path} | "
                f"Cause: {type(exc.__cause__).__name__ if exc.__cause__ else 'N/A'}"
            )
            if settings.ENVIRONMENT != "production" and exc.__cause__ is not None:
                detail = f"{detail}: {exc.__cause__}"
        else:
            logger.warning(
                f"Domain exception: {detail} | Code: {exc.internal_code} | "
                f"Path: {request.url.path}"
            )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": detail, "code": exc.internal_code},
            headers=exc.headers,
        )

    return portal_exception_handler


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    app.add_exception_handler(PortalException, build_portal_exception_handler(settings))
