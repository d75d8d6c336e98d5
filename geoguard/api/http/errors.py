# file: geoguard/api/http/errors.py
"""
Единый модуль ошибок HTTP для FastAPI/Starlette.

Особенности:
- Ответы в формате Problem Details (RFC 7807): application/problem+json.
- Собственные коды ошибок (ErrorCode) и базовое исключение AppError.
- Обработчики для AppError, RequestValidationError, HTTPException и
  неожиданных Exception (500).
- Корреляция запросов: X-Correlation-ID (из запроса или auto-uuid4).
- Безопасный вывод: без debug внутренние сведения скрываются.

Location deny-ответы сюда не относятся: у них свой контракт (policy.responses).
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

__all__ = [
    "ErrorCode",
    "FieldError",
    "Problem",
    "AppError",
    "UnauthorizedError",
    "NotFoundError",
    "UnprocessableEntityError",
    "register_exception_handlers",
]

logger = logging.getLogger("geoguard.api.errors")

PROBLEM_CONTENT_TYPE = "application/problem+json"
CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    UNPROCESSABLE_ENTITY = "unprocessable_entity"
    INTERNAL_ERROR = "internal_error"

    # доменные
    INVALID_POLICY = "invalid_policy"


class FieldError(BaseModel):
    """Описание ошибки конкретного поля для валидации/422."""
    loc: List[Union[str, int]]
    msg: str
    type: Optional[str] = None


class Problem(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    type: str
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None

    code: ErrorCode
    correlation_id: str
    fields: Optional[List[FieldError]] = None


class AppError(Exception):
    """Базовое прикладное исключение для контролируемых ошибок API."""

    def __init__(
        self,
        *,
        status: int,
        code: ErrorCode,
        title: str,
        detail: Optional[str] = None,
        fields: Optional[List[FieldError]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(detail or title)
        self.status = status
        self.code = code
        self.title = title
        self.detail = detail
        self.fields = fields
        self.headers = headers or {}

    def to_problem(self, *, correlation_id: str, instance: Optional[str] = None) -> Problem:
        return Problem(
            type=f"tag:geoguard-core:{self.code.value}",
            title=self.title,
            status=self.status,
            detail=self.detail,
            instance=instance,
            code=self.code,
            correlation_id=correlation_id,
            fields=self.fields,
        )


class UnauthorizedError(AppError):
    def __init__(self, detail: Optional[str] = None, **kw: Any) -> None:
        super().__init__(
            status=status.HTTP_401_UNAUTHORIZED,
            code=ErrorCode.UNAUTHORIZED,
            title="Unauthorized",
            detail=detail,
            headers={"WWW-Authenticate": "ApiKey"},
            **kw,
        )


class NotFoundError(AppError):
    def __init__(self, detail: Optional[str] = None, **kw: Any) -> None:
        super().__init__(status=status.HTTP_404_NOT_FOUND, code=ErrorCode.NOT_FOUND, title="Not Found", detail=detail, **kw)


class UnprocessableEntityError(AppError):
    def __init__(self, detail: Optional[str] = None, code: ErrorCode = ErrorCode.UNPROCESSABLE_ENTITY, **kw: Any) -> None:
        super().__init__(
            status=422,
            code=code,
            title="Unprocessable Entity",
            detail=detail,
            **kw,
        )


_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
}

_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    422: ErrorCode.UNPROCESSABLE_ENTITY,
}


def _get_correlation_id(request: Optional[Request]) -> str:
    if request is not None:
        cid = request.headers.get(CORRELATION_HEADER) or request.headers.get(REQUEST_ID_HEADER)
        if cid:
            return cid
    return str(uuid.uuid4())


def _problem_json_response(problem: Problem, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    hdrs = {CORRELATION_HEADER: problem.correlation_id}
    if headers:
        hdrs.update(headers)
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type=PROBLEM_CONTENT_TYPE,
        headers=hdrs,
    )


def register_exception_handlers(app: Any, *, debug: bool = False) -> None:
    """
    Регистрирует обработчики исключений в приложении FastAPI/Starlette.
    """

    async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        cid = _get_correlation_id(request)
        problem = exc.to_problem(correlation_id=cid, instance=str(request.url.path))
        logger.warning(
            "app_error",
            extra={"code": problem.code, "status": problem.status, "correlation_id": cid, "path": request.url.path},
        )
        return _problem_json_response(problem, headers=exc.headers)

    async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        cid = _get_correlation_id(request)
        fields = [
            FieldError(loc=list(e.get("loc", [])), msg=e.get("msg") or "Invalid value", type=e.get("type"))
            for e in exc.errors()
        ]
        problem = Problem(
            type=f"tag:geoguard-core:{ErrorCode.VALIDATION_ERROR.value}",
            title="Validation Error",
            status=422,
            instance=str(request.url.path),
            code=ErrorCode.VALIDATION_ERROR,
            correlation_id=cid,
            fields=fields,
        )
        logger.info("validation_error", extra={"count": len(fields), "correlation_id": cid, "path": request.url.path})
        return _problem_json_response(problem)

    async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        cid = _get_correlation_id(request)
        code = _CODES.get(exc.status_code)
        if code is None:
            # прочие 4xx сводим к bad_request
            code = ErrorCode.BAD_REQUEST if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR
        problem = Problem(
            type=f"tag:geoguard-core:{code.value}",
            title=_TITLES.get(exc.status_code, "Error"),
            status=exc.status_code,
            detail=str(exc.detail) if exc.detail else None,
            instance=str(request.url.path),
            code=code,
            correlation_id=cid,
        )
        return _problem_json_response(problem, headers=getattr(exc, "headers", None))

    async def _handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        cid = _get_correlation_id(request)
        problem = Problem(
            type=f"tag:geoguard-core:{ErrorCode.INTERNAL_ERROR.value}",
            title="Internal Server Error",
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            # В debug можно показать detail, иначе скрываем внутренности
            detail=str(exc) if debug else None,
            instance=str(request.url.path),
            code=ErrorCode.INTERNAL_ERROR,
            correlation_id=cid,
        )
        logger.exception("unhandled_exception", extra={"correlation_id": cid, "path": request.url.path})
        return _problem_json_response(problem)

    app.add_exception_handler(AppError, _handle_app_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(Exception, _handle_unexpected_exception)
