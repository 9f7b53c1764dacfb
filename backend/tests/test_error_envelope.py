import json

from backend.app import main
from backend.app.errors import conflict, not_found


def _body(resp):
    return json.loads(resp.body)


def test_operation_errors_use_the_failure_envelope():
    resp = main._http_exception(None, conflict("cannot change order status from DELIVERED to CANCELLED", "invalid_transition"))
    assert resp.status_code == 409
    assert _body(resp) == {
        "success": False,
        "error": "cannot change order status from DELIVERED to CANCELLED",
        "code": "invalid_transition",
    }


def test_not_found_keeps_its_code():
    resp = main._http_exception(None, not_found("payment not found", "payment_not_found"))
    assert resp.status_code == 404
    assert _body(resp)["code"] == "payment_not_found"


def test_db_errors_map_to_client_errors(monkeypatch):
    monkeypatch.setattr(main.settings, "env", "prod")
    handler = main._pg_error_handler(409, "conflict", "conflict")
    resp = handler(None, Exception("duplicate key value violates unique constraint"))
    assert resp.status_code == 409
    assert _body(resp) == {"success": False, "error": "conflict", "code": "conflict"}


def test_health_reports_degraded_when_db_is_down(monkeypatch):
    monkeypatch.setattr(main, "_db_health", lambda: (False, "connection refused"))

    class _Req:
        class state:
            request_id = "rid-1"

        headers = {}

    resp = main.health(_Req())
    assert resp.status_code == 503
    body = _body(resp)
    assert body["ok"] is False
    assert body["db"] == "down"
    assert body["request_id"] == "rid-1"
