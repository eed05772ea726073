from typing import Any, Dict, List, Optional
from fastapi import status, Request
from fastapi.responses import JSONResponse
from app.schemas.response_schemas import ApiResponse, ResponseStatus


def _render(request: Request, status_code: int, **fields) -> JSONResponse:
    response = ApiResponse(
        request_id=getattr(request.state, "request_id", None),
        path=str(request.url.path),
        **fields,
    )
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(exclude_none=True),
    )


class ResponseBuilder:
    """Builds the ApiResponse envelope shared by every endpoint"""

    @staticmethod
    def success(
        request: Request,
        data: Any = None,
        message: str = "Request successful",
        meta: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        return _render(
            request,
            status_code,
            success=True,
            status=ResponseStatus.SUCCESS,
            message=message,
            data=data,
            meta=meta,
        )

    @staticmethod
    def warning(
        request: Request,
        data: Any = None,
        message: str = "Request completed with warnings",
        warnings: Optional[List[str]] = None,
        meta: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        """Request succeeded but part of the work did not (e.g. some groups failed)"""
        return _render(
            request,
            status_code,
            success=True,
            status=ResponseStatus.WARNING,
            message=message,
            data=data,
            meta=meta,
            warnings=warnings,
        )

    @staticmethod
    def error(
        request: Request,
        message: str = "An error occurred",
        errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        response_meta = dict(meta or {})
        if error_code:
            response_meta["error_code"] = error_code

        return _render(
            request,
            status_code,
            success=False,
            status=ResponseStatus.ERROR,
            message=message,
            meta=response_meta or None,
            errors=errors,
        )
