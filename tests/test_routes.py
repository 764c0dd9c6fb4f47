from __future__ import annotations

import io
import uuid

import pandas as pd
import pytest

from hl7_viewer import create_app
from hl7_viewer.config import Config


def test_root_redirects_to_base_path(client) -> None:
    response = client.get("/")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/HL7/")


def test_base_path_without_slash_redirects(client) -> None:
    response = client.get("/HL7")
    assert response.status_code in (301, 308)
    assert response.headers["Location"].endswith("/HL7/")


def test_index_describes_endpoints(client) -> None:
    response = client.get("/HL7/")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["service"] == "hl7-viewer"
    assert payload["endpoints"]["stats"] == "/HL7/api/stats"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Request-ID"]


def test_parse_endpoint(client, lab_results: str) -> None:
    response = client.post("/HL7/api/parse", json={"message": lab_results})
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["message_count"] == 3
    assert payload["messages"][0]["segment_counts"]["OBX"] == 2


def test_parse_requires_message(client) -> None:
    response = client.post("/HL7/api/parse", json={})
    assert response.status_code == 400
    assert response.get_json()["error"]["kind"] == "BadRequest"

    response = client.post("/HL7/api/parse", data="not json", content_type="text/plain")
    assert response.status_code == 400


def test_value_endpoint(client, two_messages: str) -> None:
    response = client.post("/HL7/api/value", json={"message": two_messages, "address": "PID.5.2"})
    assert response.status_code == 200
    payload = response.get_json()
    assert [item["value"] for item in payload["messages"]] == ["JOHN", "JANE"]


def test_stats_endpoint(client, two_messages: str) -> None:
    response = client.post("/HL7/api/stats", json={"message": two_messages, "address": "PID.5.1"})
    assert response.status_code == 200
    stats = response.get_json()["statistics"]
    assert [row["value"] for row in stats["distinct_values"]] == ["DOE", "SMITH"]
    assert stats["messages_with_value"] == 2


def test_stats_endpoint_with_custom_logic(client, lab_results: str) -> None:
    response = client.post(
        "/HL7/api/stats",
        json={
            "message": lab_results,
            "address": "PID.8",
            "filters": ["PID.8 = F", "PV1.2 = I"],
            "mode": "custom",
            "logic": "F1 and not F2",
        },
    )
    payload = response.get_json()
    assert payload["filtered_messages"] == 2
    assert payload["statistics"]["distinct_values"][0]["value"] == "F"


def test_stats_endpoint_tagged_errors(client, two_messages: str) -> None:
    response = client.post("/HL7/api/stats", json={"message": two_messages, "address": "PID"})
    assert response.status_code == 400
    assert response.get_json()["error"]["kind"] == "InvalidAddress"

    response = client.post(
        "/HL7/api/stats",
        json={"message": two_messages, "address": "PID.5", "filters": ["nope"]},
    )
    error = response.get_json()["error"]
    assert error["kind"] == "InvalidFilterExpression"
    assert error["labels"] == ["F1"]

    response = client.post("/HL7/api/stats", json={"message": two_messages, "address": "ZZZ.1"})
    assert response.get_json()["error"]["kind"] == "NoMatchingData"


def test_stats_endpoint_rejects_malformed_filters(client, two_messages: str) -> None:
    response = client.post(
        "/HL7/api/stats", json={"message": two_messages, "filters": "PID.5 exists"}
    )
    assert response.status_code == 400
    assert response.get_json()["error"]["kind"] == "BadRequest"


def test_validate_filters_endpoint(client) -> None:
    response = client.post(
        "/HL7/api/filters/validate",
        json={"filters": ["PID.5 exists"], "mode": "custom", "logic": "F1 AND F9"},
    )
    payload = response.get_json()
    assert payload["valid"] is False
    assert payload["error"]["labels"] == ["F9"]

    response = client.post(
        "/HL7/api/filters/validate",
        json={"filters": ["PID.5 exists", "PID.8 = F"], "mode": "OR"},
    )
    assert response.get_json()["valid"] is True


def test_stats_csv_export(client, lab_results: str) -> None:
    response = client.post(
        "/HL7/api/stats/export.csv", json={"message": lab_results, "address": "OBX.3.1"}
    )
    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    frame = pd.read_csv(io.StringIO(response.get_data(as_text=True)))
    assert frame["value"].tolist() == ["WBC", "HGB", "(empty)"]


def test_stats_csv_requires_address(client, lab_results: str) -> None:
    response = client.post("/HL7/api/stats/export.csv", json={"message": lab_results})
    assert response.status_code == 400


def test_filter_export(client, two_messages: str) -> None:
    response = client.post(
        "/HL7/api/filter/export",
        json={"message": two_messages, "filters": ["PID.5.1 = SMITH"], "mode": "single"},
    )
    assert response.status_code == 200
    assert response.mimetype == "text/plain"
    assert response.get_data(as_text=True) == "MSH|^~\\&|A\rPID|||ID2^^^SYS||SMITH^JANE"


def test_filter_export_requires_filters(client, two_messages: str) -> None:
    response = client.post("/HL7/api/filter/export", json={"message": two_messages})
    assert response.status_code == 400


def test_unknown_route_is_json_404(client) -> None:
    response = client.get("/HL7/api/missing")
    assert response.status_code == 404
    assert response.get_json()["success"] is False


@pytest.mark.parametrize("key, value", [("logic", 5), ("mode", ["OR"])])
def test_non_string_mode_or_logic_is_bad_request(client, two_messages: str, key: str, value) -> None:
    body = {"message": two_messages, "filters": ["PID.5 exists"], "mode": "custom", "logic": "F1"}
    body[key] = value
    response = client.post("/HL7/api/stats", json=body)
    assert response.status_code == 400
    error = response.get_json()["error"]
    assert error["kind"] == "BadRequest"
    assert key in error["message"]


def test_deeply_nested_logic_is_rejected(client, two_messages: str) -> None:
    response = client.post(
        "/HL7/api/stats",
        json={
            "message": two_messages,
            "filters": ["PID.5 exists"],
            "mode": "custom",
            "logic": "(" * 250 + "F1" + ")" * 250,
        },
    )
    assert response.status_code == 400
    assert response.get_json()["error"]["kind"] == "InvalidCustomLogic"


def test_each_request_gets_its_own_request_id(client) -> None:
    first = client.get("/HL7/").headers["X-Request-ID"]
    second = client.get("/HL7/").headers["X-Request-ID"]
    assert first != second
    assert str(uuid.UUID(first)) == first


def _app_with_failing_route(monkeypatch, environment: str):
    monkeypatch.setenv("FLASK_ENV", environment)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("BASE_PATH", raising=False)
    monkeypatch.delenv("PORT", raising=False)
    application = create_app(Config())
    application.config["TESTING"] = True

    @application.route("/boom")
    def boom():
        raise RuntimeError("boom")

    return application


def test_unexpected_errors_are_hidden_outside_development(monkeypatch) -> None:
    response = _app_with_failing_route(monkeypatch, "production").test_client().get("/boom")
    assert response.status_code == 500
    assert response.get_json()["error"] == {
        "kind": "InternalError", "message": "Internal server error", "labels": []
    }


def test_unexpected_errors_propagate_in_development(monkeypatch) -> None:
    client = _app_with_failing_route(monkeypatch, "development").test_client()
    with pytest.raises(RuntimeError):
        client.get("/boom")
