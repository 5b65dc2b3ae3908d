"""Redaction helpers for logs, delivery logs, and diagnostics."""

from __future__ import annotations

import re

_URL_USERINFO_RE = re.compile(r"([a-z][a-z0-9+.-]*://)([^@/]+)@", re.IGNORECASE)
_QUERY_SECRET_RE = re.compile(
    r"(?i)(token|secret|password|api_key|apikey|access_token|signature|sig)=([^&\s]+)"
)
_BEARER_RE = re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~-]+)")
# Delivery webhooks (Slack, Twilio Studio, Zapier...) embed credentials in path segments.
_WEBHOOK_PATH_RE = re.compile(r"(?i)(/(?:hooks|webhooks?|services)/)([^\s?#]+)")


def redact_secrets(text: str) -> str:
    """Redact common secret patterns from a log string."""
    if not text:
        return text
    redacted = _URL_USERINFO_RE.sub(r"\1***@", text)
    redacted = _QUERY_SECRET_RE.sub(r"\1=***", redacted)
    redacted = _BEARER_RE.sub(r"\1***", redacted)
    redacted = _WEBHOOK_PATH_RE.sub(r"\1***", redacted)
    return redacted
