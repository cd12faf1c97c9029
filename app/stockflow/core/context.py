from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None
    username: str | None
    role: str | None
    trace_id: str


def build_request_context(
    *,
    user_id: str | None,
    username: str | None,
    role: str | None,
    trace_id: str,
) -> RequestContext:
    return RequestContext(
        user_id=user_id,
        username=username,
        role=role,
        trace_id=trace_id,
    )

