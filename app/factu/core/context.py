from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None
    branch_id: str | None
    point_of_sale: int
    role: str | None
    trace_id: str


def build_request_context(
    *,
    user_id: str | None,
    branch_id: str | None,
    point_of_sale: int | None,
    role: str | None,
    trace_id: str,
) -> RequestContext:
    return RequestContext(
        user_id=user_id,
        branch_id=branch_id,
        point_of_sale=point_of_sale or 1,
        role=role,
        trace_id=trace_id,
    )
