from __future__ import annotations

import allure

from cli_relay.execution.echo_engine import QUOTA_STDERR
from cli_relay.execution.failure_classifier import (
    QUOTA_SIGNATURE_VERSION,
    classify_quota_failure,
    is_quota_failure,
)
from cli_relay.execution.models import QuotaDetail

pytestmark = [
    allure.epic("Engine Execution"),
    allure.feature("Quota Classification"),
]


def test_classifier_version_is_stable() -> None:
    assert QUOTA_SIGNATURE_VERSION == 1


def test_classifier_extracts_all_fields_from_known_format() -> None:
    stderr = (
        "[API Error: RESOURCE_EXHAUSTED]\n"
        "Quota exceeded for quota metric 'Gemini 2.5 Pro Requests' and limit "
        "'Gemini 2.5 Pro Requests per day per user per tier'\n"
        "status: 429\n"
        '{"reason": "rateLimitExceeded", "domain": "googleapis.com"}\n'
    )

    assert classify_quota_failure(stderr) == QuotaDetail(
        resource_name="Gemini 2.5 Pro Requests",
        status_code=429,
        reason_code="rateLimitExceeded",
    )


def test_classifier_reads_json_style_status_and_custom_reason() -> None:
    stderr = (
        '{"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "details": '
        '[{"reason": "quotaExhausted"}]}, "status": 503}\n'
        "Quota exceeded for quota metric 'Flash Requests'"
    )

    detail = classify_quota_failure(stderr)

    assert detail is not None
    assert detail.resource_name == "Flash Requests"
    assert detail.status_code == 503
    assert detail.reason_code == "quotaExhausted"


def test_classifier_applies_defaults_when_only_marker_present() -> None:
    assert classify_quota_failure("RESOURCE_EXHAUSTED") == QuotaDetail(
        resource_name="Unknown Model",
        status_code=429,
        reason_code="rateLimitExceeded",
    )


def test_classifier_ignores_unrelated_stderr() -> None:
    assert classify_quota_failure("permission denied") is None
    assert classify_quota_failure("") is None
    assert not is_quota_failure("HTTP 429 too many requests")


def test_classifier_fails_open_without_exact_marker() -> None:
    stderr = "Quota exceeded for quota metric 'Gemini 2.5 Pro Requests'\nstatus: 429"

    assert classify_quota_failure(stderr) is None
    assert classify_quota_failure("resource_exhausted") is None


def test_echo_engine_quota_output_matches_signature() -> None:
    detail = classify_quota_failure(QUOTA_STDERR)

    assert detail is not None
    assert detail.resource_name == "Gemini 2.5 Pro Requests"


def test_quota_detail_error_payload() -> None:
    payload = QuotaDetail(
        resource_name="Gemini 2.5 Pro Requests",
        status_code=429,
        reason_code="rateLimitExceeded",
    ).to_error_payload()

    assert payload["error"]["code"] == 429
    assert payload["error"]["details"]["reason"] == "rateLimitExceeded"
