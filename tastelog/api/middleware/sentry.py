"""
Sentry setup. Disabled when SENTRY_DSN is empty.

Events leave the process without session cookies, Authorization headers
(including the Kakao REST key) or Set-Cookie values.
"""

from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from tastelog.api.config import settings

FILTERED = "[FILTERED]"
_SECRET_HEADERS = frozenset({"authorization", "cookie", "set-cookie"})


def _mask_headers(headers: Any) -> None:
    if isinstance(headers, dict):
        for name in headers:
            if name.lower() in _SECRET_HEADERS:
                headers[name] = FILTERED


def scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """before_send hook; masks credentials in the request and in breadcrumbs."""
    request = event.get("request")
    if isinstance(request, dict):
        _mask_headers(request.get("headers"))
        if "cookies" in request:
            request["cookies"] = FILTERED

    for crumb in (event.get("breadcrumbs") or {}).get("values", []):
        if isinstance(crumb.get("data"), dict):
            _mask_headers(crumb["data"].get("headers"))
    return event


def setup_sentry() -> None:
    if not settings.sentry_dsn:
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
    )
