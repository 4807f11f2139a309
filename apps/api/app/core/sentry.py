"""Sentry initialisation for the policy version API."""

from typing import Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.modules.policy_versions.exceptions import VersionControlError

logger = structlog.get_logger()

# Gateway identity headers plus the usual credentials
_SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-user-id", "x-org-id", "x-user-role"}


def _is_expected_domain_error(hint: dict[str, Any]) -> bool:
    exc_info = hint.get("exc_info")
    if not exc_info:
        return False
    exc = exc_info[1]
    # Conflicts are retryable races worth tracking; the rest are caller mistakes
    return isinstance(exc, VersionControlError) and not exc.retryable


def before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """Drop caller errors (404/422/403) and redact identity headers."""
    if _is_expected_domain_error(hint):
        return None

    headers = event.get("request", {}).get("headers", {})
    for header in list(headers):
        if header.lower() in _SENSITIVE_HEADERS:
            headers[header] = "[REDACTED]"
    return event


def init_sentry(
    dsn: str | None,
    environment: str = "development",
    release: str | None = None,
) -> None:
    """Initialise Sentry before the FastAPI app is created. No-op without a DSN."""
    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    traces_sample_rate = 0.1 if environment == "production" else 1.0
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        send_default_pii=False,
        before_send=before_send,
    )
    logger.info("sentry_initialized", environment=environment, traces_sample_rate=traces_sample_rate)
