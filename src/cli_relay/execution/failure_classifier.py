"""Deterministic quota-exhaustion detection in engine stderr.

The engine reports quota exhaustion only as free-form diagnostic text, so the
parser is pinned to the known message format and versioned.  Anything that
does not carry the exact marker is treated as "not a quota failure", which
means no fallback and the raw error is surfaced.
"""

from __future__ import annotations

import re

from cli_relay.execution.models import QuotaDetail

QUOTA_SIGNATURE_VERSION = 1
QUOTA_MARKER = "RESOURCE_EXHAUSTED"

DEFAULT_RESOURCE_NAME = "Unknown Model"
DEFAULT_STATUS_CODE = 429
DEFAULT_REASON_CODE = "rateLimitExceeded"

_RESOURCE_PATTERN = re.compile(r"Quota exceeded for quota metric '([^']+)'")
_STATUS_PATTERN = re.compile(r"status[\"\s]*[:=]\s*(\d+)")
_REASON_PATTERN = re.compile(r"\"reason\":\s*\"([^\"]+)\"")


def is_quota_failure(error_text: str) -> bool:
    """Return True when stderr carries the quota exhaustion marker."""

    return QUOTA_MARKER in error_text


def classify_quota_failure(error_text: str) -> QuotaDetail | None:
    """Extract quota details from stderr, or None when the marker is absent."""

    if not is_quota_failure(error_text):
        return None

    resource_match = _RESOURCE_PATTERN.search(error_text)
    status_match = _STATUS_PATTERN.search(error_text)
    reason_match = _REASON_PATTERN.search(error_text)
    return QuotaDetail(
        resource_name=resource_match.group(1) if resource_match else DEFAULT_RESOURCE_NAME,
        status_code=int(status_match.group(1)) if status_match else DEFAULT_STATUS_CODE,
        reason_code=reason_match.group(1) if reason_match else DEFAULT_REASON_CODE,
    )
