from decimal import Decimal

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.factu.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition


_HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _remember_error(request: Request, code: str, exc: Exception) -> None:
    request.state.error_code = code
    request.state.error_class = exc.__class__.__name__


def _record_idempotency_failure(request: Request, status_code: int, body: dict) -> None:
    context = getattr(request.state, "idempotency", None)
    if context is not None:
        context.record_failure(status_code=status_code, response_body=body)


def _json_safe(value):
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def _validation_details(exc: RequestValidationError) -> dict:
    errors = []
    for error in exc.errors():
        loc = list(error.get("loc", []))
        field = ".".join(str(item) for item in loc if item not in {"body", "query", "path", "header"}) or None
        errors.append(
            {
                "field": field,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
                "loc": loc,
            }
        )
    return {"errors": errors}


def error_body(error: ErrorDefinition, details: object, trace_id: str) -> dict:
    return {
        "code": error.code,
        "message": error.message,
        "details": _json_safe(details),
        "trace_id": trace_id,
    }


def error_response(error: ErrorDefinition, details: object, trace_id: str) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error_body(error, details, trace_id))


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        _remember_error(request, exc.error.code, exc)
        body = error_body(exc.error, exc.details, _trace_id(request))
        _record_idempotency_failure(request, exc.error.status_code, body)
        return JSONResponse(status_code=exc.error.status_code, content=body)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        code = _HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
        _remember_error(request, code, exc)
        body = {
            "code": code,
            "message": str(exc.detail) if exc.detail is not None else "HTTP error",
            "details": None,
            "trace_id": _trace_id(request),
        }
        _record_idempotency_failure(request, exc.status_code, body)
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        _remember_error(request, ErrorCatalog.VALIDATION_ERROR.code, exc)
        body = error_body(ErrorCatalog.VALIDATION_ERROR, _validation_details(exc), _trace_id(request))
        _record_idempotency_failure(request, ErrorCatalog.VALIDATION_ERROR.status_code, body)
        return JSONResponse(status_code=ErrorCatalog.VALIDATION_ERROR.status_code, content=body)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        _remember_error(request, ErrorCatalog.INTERNAL_ERROR.code, exc)
        body = error_body(ErrorCatalog.INTERNAL_ERROR, {"type": exc.__class__.__name__}, _trace_id(request))
        _record_idempotency_failure(request, ErrorCatalog.INTERNAL_ERROR.status_code, body)
        return JSONResponse(status_code=ErrorCatalog.INTERNAL_ERROR.status_code, content=body)
