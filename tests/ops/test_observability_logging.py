from types import SimpleNamespace

from starlette.requests import Request
from starlette.responses import Response

from app.stockflow.core.db_timing import DbUsage
from app.stockflow.middleware.observability import build_request_log_payload


def test_build_request_log_payload():
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/stockflow/transfers/abc/execute",
        "headers": [],
        "route": SimpleNamespace(path="/stockflow/transfers/{transfer_id}/execute"),
    }
    request = Request(scope)
    request.state.trace_id = "trace-1"
    request.state.user_id = "user-1"
    request.state.error_code = None
    response = Response(status_code=200)

    payload = build_request_log_payload(
        request=request,
        response=response,
        latency_ms=12.3456,
        db_usage=DbUsage(time_ms=4.5678, queries=9),
    )

    assert payload["trace_id"] == "trace-1"
    assert payload["user_id"] == "user-1"
    assert payload["route"] == "/stockflow/transfers/{transfer_id}/execute"
    assert payload["method"] == "POST"
    assert payload["status_code"] == 200
    assert payload["latency_ms"] == 12.35
    assert payload["db_time_ms"] == 4.57
    assert payload["db_queries"] == 9


def test_build_request_log_payload_without_response():
    request = Request({"type": "http", "method": "GET", "path": "/health", "headers": []})

    payload = build_request_log_payload(request=request, response=None, latency_ms=1.0, db_usage=None)

    assert payload["route"] == "/health"
    assert payload["status_code"] == 500
    assert payload["db_time_ms"] is None
    assert payload["trace_id"] == ""
