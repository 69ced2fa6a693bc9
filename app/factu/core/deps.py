import uuid

from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError

from app.factu.core.context import RequestContext, build_request_context
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.security import TokenData, decode_token, oauth2_scheme


def get_current_token_data(token: str | None = Depends(oauth2_scheme)) -> TokenData:
    if not token:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    try:
        payload = decode_token(token)
        return TokenData(**payload)
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def require_request_context(
    request: Request,
    token_data: TokenData = Depends(get_current_token_data),
) -> RequestContext:
    if not token_data.branch_id:
        raise AppError(ErrorCatalog.BRANCH_SCOPE_REQUIRED)
    try:
        uuid.UUID(token_data.branch_id)
    except ValueError as exc:
        raise AppError(ErrorCatalog.BRANCH_SCOPE_REQUIRED, details={"branch_id": token_data.branch_id}) from exc
    context = build_request_context(
        user_id=token_data.sub,
        branch_id=token_data.branch_id,
        point_of_sale=token_data.point_of_sale,
        role=token_data.role,
        trace_id=getattr(request.state, "trace_id", ""),
    )
    request.state.context = context
    return context


def enforce_branch_scope(context: RequestContext, branch_id: str | None) -> None:
    if branch_id is not None and str(branch_id) != str(context.branch_id):
        raise AppError(ErrorCatalog.CROSS_BRANCH_ACCESS_DENIED)


__all__ = [
    "get_current_token_data",
    "require_request_context",
    "enforce_branch_scope",
]
