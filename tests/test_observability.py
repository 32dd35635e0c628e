import json
import logging

from nexusdash.core.middleware import REQUEST_ID_HEADER, is_valid_request_id, resolve_request_id
from nexusdash.core.observability import (
    JsonLineFormatter,
    normalize_error,
    request_id_var,
    to_jsonable,
)


def make_record(message="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("nexusdash.server", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_renders_one_json_object():
    formatter = JsonLineFormatter("nexusdash", "test")
    line = formatter.format(make_record(scope="tasks", metadata={"taskId": "t1"}))
    payload = json.loads(line)

    assert "\n" not in line
    assert payload["level"] == "info"
    assert payload["scope"] == "tasks"
    assert payload["service"] == "nexusdash"
    assert payload["runtimeEnvironment"] == "test"
    assert payload["message"] == "hello"
    assert payload["metadata"] == {"taskId": "t1"}
    assert payload["timestamp"].endswith("Z")
    assert "requestId" not in payload


def test_formatter_maps_warning_level_and_request_id():
    formatter = JsonLineFormatter("nexusdash", "test")
    token = request_id_var.set("req-123")
    try:
        payload = json.loads(formatter.format(make_record(level=logging.WARNING)))
    finally:
        request_id_var.reset(token)

    assert payload["level"] == "warn"
    assert payload["requestId"] == "req-123"
    assert payload["scope"] == "nexusdash.server"


def test_to_jsonable_marks_circular_references():
    data = {"a": 1}
    data["self"] = data

    assert to_jsonable(data) == {"a": 1, "self": "[Circular]"}


def test_to_jsonable_allows_shared_siblings():
    shared = {"x": 1}

    assert to_jsonable({"left": shared, "right": shared}) == {
        "left": {"x": 1},
        "right": {"x": 1},
    }


def test_normalize_error():
    assert normalize_error("boom") == {"errorMessage": "boom"}
    assert normalize_error(42) == {"errorMessage": "Unknown error type", "error": 42}

    normalized = normalize_error(ValueError("bad value"))
    assert normalized["errorName"] == "ValueError"
    assert normalized["errorMessage"] == "bad value"


def test_resolve_request_id():
    assert resolve_request_id("abc-123.X_y") == "abc-123.X_y"
    assert resolve_request_id("  padded  ") == "padded"
    assert resolve_request_id("has space") != "has space"
    assert resolve_request_id(None)
    assert not is_valid_request_id("x" * 129)


def test_request_id_header_is_echoed(client):
    response = client.get("/api/health/live", headers={REQUEST_ID_HEADER: "trace-1"})
    assert response.headers[REQUEST_ID_HEADER] == "trace-1"


def test_request_id_header_is_minted_for_invalid_values(client):
    response = client.get("/api/health/live", headers={REQUEST_ID_HEADER: "bad id!"})
    assert response.headers[REQUEST_ID_HEADER] != "bad id!"
    assert len(response.headers[REQUEST_ID_HEADER]) == 36
