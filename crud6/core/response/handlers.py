import logging
from typing import Any, Dict, List, Optional

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from crud6.core.exceptions import CRUD6Exception
from crud6.core.response.schemas import BaseResponse, ErrorResponse, PaginatedResponse

logger = logging.getLogger(__name__)


def success_response(
    data: Any = None,
    message: Optional[str] = None,
    status_code: int = status.HTTP_200_OK,
    **extra: Any,
) -> JSONResponse:
    """Wrap data in the success envelope."""
    body = BaseResponse[Any](success=True, message=message, data=data).model_dump()
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def paginated_response(
    items: List[Any],
    total: int,
    page: int,
    per_page: int,
    pages: int,
    message: Optional[str] = None,
) -> JSONResponse:
    body = PaginatedResponse[Any](
        success=True,
        message=message,
        data=items,
        total=total,
        page=page,
        per_page=per_page,
        pages=pages,
    ).model_dump()
    return JSONResponse(status_code=status.HTTP_200_OK, content=jsonable_encoder(body))


def error_response(
    error_code: str,
    message: str,
    status_code: int = status.HTTP_400_BAD_REQUEST,
    details: Optional[List[Dict[str, Any]]] = None,
) -> JSONResponse:
    body = ErrorResponse(
        message=message,
        error_code=error_code,
        error_details=details or [],
    ).model_dump()
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def crud6_exception_handler(request: Request, exc: CRUD6Exception) -> JSONResponse:
    """Translate the error taxonomy into status-coded JSON bodies."""
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.detail,
            exc.error_code,
        )
    else:
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method,
            request.url.path,
            exc.detail,
            exc.error_code,
        )
    return error_response(
        error_code=exc.error_code,
        message=str(exc.detail),
        status_code=exc.status_code,
        details=[detail.model_dump() for detail in exc.error_details],
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for anything outside the taxonomy."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(
        error_code="INTERNAL_ERROR",
        message="Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
