from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.factu.core.context import build_request_context
from app.factu.core.security import decode_token


class BranchContextMiddleware(BaseHTTPMiddleware):
    """Attaches the cashier's branch and point of sale to the request when a bearer token is present.

    Invalid tokens are ignored here; protected routes reject them through the auth dependency.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.branch_id = None
        request.state.user_id = None
        request.state.point_of_sale = None
        request.state.role = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            token = auth_header.split(" ", 1)[1]
            try:
                payload = decode_token(token)
            except JWTError:
                payload = {}
            request.state.branch_id = payload.get("branch_id")
            request.state.user_id = payload.get("sub")
            request.state.point_of_sale = payload.get("point_of_sale")
            request.state.role = payload.get("role")

        request.state.context = build_request_context(
            user_id=request.state.user_id,
            branch_id=request.state.branch_id,
            point_of_sale=request.state.point_of_sale,
            role=request.state.role,
            trace_id=getattr(request.state, "trace_id", ""),
        )

        return await call_next(request)
