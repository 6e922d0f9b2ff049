import logging
import uuid

from fastapi import Request
from starlette.requests import Request as StarletteRequest

from upload_service import logger as log
from upload_service.middleware import (
    CORRELATION_HEADER,
    current_context,
    get_correlation_id,
    get_logger,
)


def summary_records(records):
    return [r for r in records if "status_code" in getattr(r, "fields", {})]


def test_correlation_id_is_uuid4(client):
    response = client.get("/health")

    correlation_id = response.headers[CORRELATION_HEADER]
    assert uuid.UUID(correlation_id).version == 4


def test_incoming_correlation_header_is_not_reused(client):
    response = client.get("/health", headers={CORRELATION_HEADER: "client-supplied"})

    assert response.headers[CORRELATION_HEADER] != "client-supplied"


def test_summary_logged_at_info_for_success(client, log_records):
    response = client.get("/health")

    summary = summary_records(log_records)
    assert len(summary) == 1
    record = summary[0]
    assert record.levelno == logging.INFO
    assert record.getMessage().startswith("GET /health - 200 (")
    assert record.fields["correlation_id"] == response.headers[CORRELATION_HEADER]
    assert record.fields["method"] == "GET"
    assert record.fields["path"] == "/health"
    assert record.fields["size"] == int(response.headers["content-length"])
    assert record.fields["duration_ms"] >= 0


def test_summary_logged_at_error_for_failures(client, log_records):
    client.get("/video/12345")

    summary = summary_records(log_records)
    assert [r.levelno for r in summary] == [logging.ERROR]
    assert summary[0].fields["status_code"] == 404


def test_handler_logs_carry_request_fields(client, log_records):
    response = client.get("/health")

    handler_record = next(r for r in log_records if r.getMessage() == "Health check requested")
    assert handler_record.fields["correlation_id"] == response.headers[CORRELATION_HEADER]
    assert "client_ip" in handler_record.fields


def test_context_is_visible_to_handler(app, client):
    async def whoami(request: Request):
        ctx = current_context()
        return {
            "state": get_correlation_id(request),
            "task_local": ctx.correlation_id if ctx else None,
        }

    app.add_api_route("/whoami", whoami)

    response = client.get("/whoami")

    body = response.json()
    assert body["state"] == response.headers[CORRELATION_HEADER]
    assert body["task_local"] == body["state"]
    assert current_context() is None


def test_fallbacks_without_middleware():
    request = StarletteRequest({"type": "http", "method": "GET", "path": "/", "headers": []})

    assert get_correlation_id(request) == "unknown"
    assert get_logger(request) is log.get_logger()


def test_unexpected_exception_becomes_500(app, client, log_records):
    async def explode():
        raise RuntimeError("kaboom")

    app.add_api_route("/explode", explode)

    response = client.get("/explode")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal Server Error"}
    assert response.headers[CORRELATION_HEADER]

    failure = next(r for r in log_records if r.getMessage() == "Unhandled exception while serving request")
    assert failure.exc_info is not None
    assert failure.fields["error"].args == ("kaboom",)
    assert summary_records(log_records)[-1].fields["status_code"] == 500
