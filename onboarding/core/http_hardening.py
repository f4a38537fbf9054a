from __future__ import annotations

import hashlib
import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from onboarding.core.config import settings
from onboarding.core.errors import OnboardingError, PersistenceError

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("onboarding.http")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=(), usb=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def _request_id_from_header(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value or not _REQUEST_ID_RE.fullmatch(value):
        return uuid4().hex
    return value


def _device_fingerprint(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value:
        return "-"
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def install_http_hardening(app: FastAPI) -> None:
    @app.middleware("http")
    async def _http_hardening_middleware(request: Request, call_next):
        request_id = _request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        started_at = perf_counter()

        response = await call_next(request)

        for key, value in SECURITY_HEADERS.items():
            response.headers[key] = value
        # Session and challenge state must never be served from a cache.
        response.headers["Cache-Control"] = "no-store"
        response.headers["Pragma"] = "no-cache"
        response.headers[REQUEST_ID_HEADER] = request_id

        duration_ms = (perf_counter() - started_at) * 1000.0
        _LOG.info(
            "%s %s status=%s duration_ms=%.2f request_id=%s device=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
            _device_fingerprint(request.headers.get(settings.DEVICE_ID_HEADER)),
        )
        return response


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OnboardingError)
    async def _onboarding_error_handler(request: Request, exc: OnboardingError):
        if isinstance(exc, PersistenceError):
            _LOG.error("%s %s persistence_error=%s", request.method, request.url.path, exc.message)
        headers = {}
        retry_after = exc.details.get("retry_after_seconds")
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)
