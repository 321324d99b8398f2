from conftest import report_payload


def test_success_response_contains_trace_id_and_success_envelope(as_user):
    resp = as_user("u_alice").post("/api/v1/createReport", json=report_payload())
    assert resp.status_code == 201
    assert resp.headers.get("x-trace-id")
    assert resp.headers.get("x-request-id")

    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "ok"
    assert body["data"]["id"].startswith("rpt_")
    assert body["meta"]["trace_id"] == resp.headers["x-trace-id"]


def test_incoming_trace_and_request_ids_are_echoed(as_user):
    resp = as_user("u_alice").post(
        "/api/v1/countMyReports",
        headers={"x-trace-id": "trace_cat_1", "x-request-id": "req_cat_1"},
    )
    assert resp.headers["x-trace-id"] == "trace_cat_1"
    assert resp.headers["x-request-id"] == "req_cat_1"
    assert resp.json()["meta"]["trace_id"] == "trace_cat_1"


def test_error_response_contains_standard_error_object(client):
    resp = client.get("/route-not-exists")
    assert resp.status_code == 404
    assert resp.headers.get("x-trace-id")
    assert resp.headers.get("x-request-id")

    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "REQ_NOT_FOUND"
    assert set(body["error"].keys()) >= {"code", "message", "retryable", "class"}
    assert body["meta"]["trace_id"]


def test_middleware_rejection_uses_error_envelope(client):
    resp = client.post(
        "/api/v1/listMyReports",
        headers={"Authorization": "Bearer broken", "x-trace-id": "trace_bad_token"},
    )
    assert resp.status_code == 401
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["class"] == "security_sensitive"
    assert body["error"]["retryable"] is False
    assert body["meta"]["trace_id"] == "trace_bad_token"
    assert resp.headers["x-trace-id"] == "trace_bad_token"
