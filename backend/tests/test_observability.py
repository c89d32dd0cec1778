import json
import logging
from uuid import UUID

from fastapi.testclient import TestClient

from beacon.main import app
from beacon.observability import (
    JsonFormatter,
    get_request_id,
    preview_text,
    request_scope,
    sanitize_for_logging,
)


def test_request_id_header_is_generated_when_missing() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    request_id = response.headers.get("X-Request-ID")
    assert request_id is not None
    UUID(request_id)


def test_request_id_header_is_preserved_when_provided() -> None:
    with TestClient(app) as client:
        response = client.get("/ready", headers={"X-Request-ID": "demo-request-123"})
    assert response.status_code == 200
    assert response.headers.get("X-Request-ID") == "demo-request-123"


def test_request_started_log_redacts_sensitive_query_values(caplog) -> None:
    with TestClient(app) as client:
        with caplog.at_level(logging.INFO, logger="beacon.api"):
            response = client.get("/health?token=supersecret&ein=12-3456789&q=public")
    assert response.status_code == 200

    request_started_logs = [
        record for record in caplog.records if getattr(record, "event", None) == "request_started"
    ]
    assert request_started_logs
    query = request_started_logs[-1].query
    assert query["token"] == "[REDACTED]"
    assert query["ein"] == "[REDACTED]"
    assert query["q"] == "public"


def test_sanitize_for_logging_redacts_organization_identifiers() -> None:
    aws_access_key = "AKIA" "ABCDEFGHIJKLMNOP"
    payload = {
        "notes": (
            "Contact grants@foodbank.org or (415) 555-0101, EIN 12-3456789, "
            f"token Bearer abc123, key {aws_access_key}."
        ),
        "bank_account": "000123456789",
        "routing_number": "121000358",
    }

    sanitized = sanitize_for_logging(payload, max_string_length=2000)

    notes = sanitized["notes"]
    assert "[REDACTED_EMAIL]" in notes
    assert "[REDACTED_PHONE]" in notes
    assert "[REDACTED_EIN]" in notes
    assert "12-3456789" not in notes
    assert "Bearer [REDACTED]" in notes
    assert "[REDACTED_AWS_ACCESS_KEY]" in notes
    assert sanitized["bank_account"] == "[REDACTED]"
    assert sanitized["routing_number"] == "[REDACTED]"


def test_sanitize_for_logging_truncates_long_strings() -> None:
    sanitized = sanitize_for_logging({"draft": "a" * 50}, max_string_length=10)

    assert sanitized["draft"] == "aaaaaaaaaa...[truncated]"


def test_preview_text_collapses_whitespace_and_truncates() -> None:
    assert preview_text("Our  pantry\n\nserved families.") == "Our pantry served families."
    assert preview_text("x" * 10, max_chars=4) == "xxxx..."
    assert preview_text(None) == ""


def test_request_scope_binds_and_restores_request_id() -> None:
    before = get_request_id()
    with request_scope("batch-job-7") as request_id:
        assert request_id == "batch-job-7"
        assert get_request_id() == "batch-job-7"
    assert get_request_id() == before


def test_json_formatter_emits_extra_fields_sanitized() -> None:
    record = logging.LogRecord("beacon.pipeline", logging.INFO, __file__, 1, "generation_completed", None, None)
    record.event = "generation_completed"
    record.request_id = "req-1"
    record.organization_email = "grants@foodbank.org"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "generation_completed"
    assert payload["logger"] == "beacon.pipeline"
    assert payload["event"] == "generation_completed"
    assert payload["request_id"] == "req-1"
    assert payload["organization_email"] == "[REDACTED_EMAIL]"
