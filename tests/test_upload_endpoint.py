# tests/test_upload_endpoint.py
from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

import api  # imports app + module-level objects
from functions.relay.forwarding_client import ForwardingClient
from functions.relay.relay_service import RelayService
from functions.utils.settings import Settings

SECRET_WEBHOOK_URL = "http://webhook.test/webhook/super-secret-token"


@pytest.fixture()
def client() -> TestClient:
    return TestClient(api.app)


class _Downstream:
    """Stands in for the webhook and records every call it receives."""

    def __init__(self, handler) -> None:
        self._handler = handler
        self.calls: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        result = self._handler(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result


def _install(monkeypatch: pytest.MonkeyPatch, handler, **overrides) -> _Downstream:
    downstream = _Downstream(handler)
    settings = Settings(webhook_url=SECRET_WEBHOOK_URL, **overrides)
    forwarder = ForwardingClient(settings, transport=httpx.MockTransport(downstream))
    monkeypatch.setattr(api, "relay", RelayService(settings, forwarder=forwarder))
    return downstream


def _pdf():
    return {"file": ("Quarterly Report.pdf", b"%PDF-1.4 fake", "application/pdf")}


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------
def test_health_ok(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert "service" in body


def test_healthz_ok(client: TestClient) -> None:
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


# -------------------------------------------------------------------
# Success
# -------------------------------------------------------------------
def test_upload_success_with_fenced_json_output(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    output = '```json\n{"coverage": "80%", "file_type": "report", "notes": "Looks complete"}\n```'
    downstream = _install(
        monkeypatch,
        lambda request: httpx.Response(200, json={"output": output, "threadId": "thread_42"}),
    )

    r = client.post("/upload", files=_pdf(), headers={"X-Correlation-Id": "corr-123"})

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "File uploaded successfully"
    assert body["filename"] == "Quarterly Report.pdf"
    assert body["fileType"] == "application/pdf"
    assert "errorKind" not in body

    # downstream keys preserved verbatim, parsed output attached
    assert body["data"]["threadId"] == "thread_42"
    assert body["data"]["output"] == output
    assert body["data"]["parsedOutput"] == {
        "coverage": "80%",
        "file_type": "report",
        "notes": "Looks complete",
    }

    assert r.headers.get("X-Correlation-Id") == "corr-123"

    # one outbound call, file passed through
    assert len(downstream.calls) == 1
    sent = downstream.calls[0]
    assert sent.headers["X-Correlation-Id"] == "corr-123"
    assert b'filename="Quarterly Report.pdf"' in sent.content
    assert b"Content-Type: application/pdf" in sent.content


def test_api_upload_alias(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, lambda request: httpx.Response(200, json={"output": '{"file_type":"invoice"}'}))

    r = client.post("/api/upload", files=_pdf())

    assert r.status_code == 200
    assert r.json()["data"]["parsedOutput"]["file_type"] == "invoice"
    assert r.headers.get("X-Correlation-Id", "").startswith("corr_")


def test_upload_success_with_empty_body(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, lambda request: httpx.Response(200))

    r = client.post("/upload", files=_pdf())

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "File processed successfully (no detailed response)"


def test_upload_success_with_plain_text_output(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, lambda request: httpx.Response(200, json={"output": "plain text, not JSON"}))

    r = client.post("/upload", files=_pdf())

    body = r.json()
    assert body["success"] is True
    assert body["data"] == {"output": "plain text, not JSON"}


# -------------------------------------------------------------------
# Intake failures
# -------------------------------------------------------------------
def test_upload_without_file_part_returns_400(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    downstream = _install(monkeypatch, lambda request: httpx.Response(200))

    r = client.post("/upload", files={"attachment": ("a.txt", b"abc", "text/plain")})

    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == "NoFileProvided"
    assert body["error"] == "No file uploaded"
    assert downstream.calls == []


def test_upload_over_limit_is_rejected_before_forwarding(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    downstream = _install(monkeypatch, lambda request: httpx.Response(200))
    too_big = b"x" * (api.settings.max_upload_bytes + 1)

    r = client.post("/upload", files={"file": ("big.bin", too_big, "application/octet-stream")})

    assert r.status_code == 413
    body = r.json()
    assert body["errorKind"] == "PayloadTooLarge"
    assert body["details"]["maxBytes"] == 10 * 1024 * 1024
    assert downstream.calls == []


def test_text_field_named_file_is_a_local_processing_error(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    downstream = _install(monkeypatch, lambda request: httpx.Response(200))

    r = client.post("/upload", data={"file": "not a file"})

    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == "LocalProcessingError"
    assert isinstance(body["details"]["subErrors"], list)
    assert downstream.calls == []


# -------------------------------------------------------------------
# Downstream failures
# -------------------------------------------------------------------
@pytest.mark.parametrize(
    "status, kind",
    [
        (404, "UpstreamUnavailable"),
        (520, "UpstreamGatewayError"),
        (504, "TimeoutError"),
        (422, "UpstreamRejected"),
        (500, "UpstreamRejected"),
    ],
)
def test_downstream_error_statuses(
    client: TestClient, monkeypatch: pytest.MonkeyPatch, status: int, kind: str
) -> None:
    _install(monkeypatch, lambda request: httpx.Response(status, json={"code": status, "error_detail": "x"}))

    r = client.post("/upload", files=_pdf())

    assert r.status_code == status
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == kind
    assert body["details"] == {"statusCode": status, "body": {"code": status, "error_detail": "x"}}
    assert body["filename"] == "Quarterly Report.pdf"
    assert "data" not in body


def test_downstream_timeout_returns_504_without_retry(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    downstream = _install(monkeypatch, slow, timeout_seconds=0.05)

    r = client.post("/upload", files=_pdf())

    assert r.status_code == 504
    body = r.json()
    assert body["errorKind"] == "TimeoutError"
    assert body["details"]["transportFailure"] == "timeout"
    assert len(downstream.calls) == 1


def test_connection_failure_hides_webhook_url(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(f"cannot reach {request.url}", request=request)

    _install(monkeypatch, refuse)

    r = client.post("/upload", files=_pdf())

    assert r.status_code == 500
    body = r.json()
    assert body["errorKind"] == "DownstreamConnectionError"
    assert "super-secret-token" not in r.text
    assert "webhook.test" not in json.dumps(body)


def test_unexpected_relay_failure_is_wrapped_in_envelope(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    class _BrokenRelay:
        async def relay(self, upload, *, correlation_id=None):
            raise RuntimeError("boom")

    monkeypatch.setattr(api, "relay", _BrokenRelay())

    r = client.post("/upload", files=_pdf())

    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == "LocalProcessingError"
    assert "boom" not in r.text


def test_deeply_nested_output_still_succeeds(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    deep = '{"a": ' + "[" * 100000 + "]" * 100000 + "}"
    _install(monkeypatch, lambda request: httpx.Response(200, json={"output": deep}))

    r = client.post("/upload", files=_pdf())

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"] == {"output": deep}


def test_downstream_304_is_reported_as_502(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, lambda request: httpx.Response(304))

    r = client.post("/upload", files=_pdf())

    assert r.status_code == 502
    body = r.json()
    assert body["errorKind"] == "UpstreamRejected"
    assert body["details"]["statusCode"] == 304


# -------------------------------------------------------------------
# Router and unhandled failures
# -------------------------------------------------------------------
def test_wrong_method_returns_envelope(client: TestClient) -> None:
    r = client.get("/upload", headers={"X-Correlation-Id": "corr-405"})

    assert r.status_code == 405
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == "LocalProcessingError"
    assert "detail" not in body
    assert r.headers["X-Correlation-Id"] == "corr-405"


def test_unknown_path_returns_envelope(client: TestClient) -> None:
    r = client.get("/no-such-route", headers={"X-Correlation-Id": "corr-404"})

    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == "LocalProcessingError"
    assert "detail" not in body
    assert r.headers["X-Correlation-Id"] == "corr-404"


def test_failure_outside_endpoint_guards_is_wrapped_in_envelope(monkeypatch: pytest.MonkeyPatch) -> None:
    def _broken_mapper(exc):
        raise RuntimeError("mapper exploded")

    monkeypatch.setattr(api, "map_intake_error", _broken_mapper)
    client = TestClient(api.app, raise_server_exceptions=False)

    r = client.post("/upload", files={"attachment": ("a.txt", b"abc", "text/plain")})

    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == "LocalProcessingError"
    assert body["details"]["reason"] == "unhandled_exception"
    assert "exploded" not in r.text
    assert "X-Correlation-Id" in r.headers
