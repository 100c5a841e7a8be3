"""
Security middleware: address blocking, body limits, screening, rate limiting and response headers.
"""

from typing import Dict, Optional
from urllib.parse import unquote_plus

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.errors import AccessDeniedError, PayloadTooLargeError, RateLimitError, ValidationError
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector

from ..security import AbuseTracker, RequestScreener, TokenBucketRateLimiter, get_client_ip


def security_headers(csp_directives: str) -> Dict[str, str]:
    return {
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "X-Frame-Options": "DENY",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
        "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
        "Content-Security-Policy": csp_directives,
        "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }


class SecurityMiddleware:
    """Refuses blocked, oversized, suspicious or too frequent requests before routing.

    Screening failures, oversized bodies and rate limit hits are fed to the
    :class:`AbuseTracker`; an address that accumulates enough of them is
    refused outright until its block lapses.
    """

    def __init__(
        self,
        abuse_tracker: AbuseTracker,
        screener: Optional[RequestScreener] = None,
        *,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        max_body_bytes: int = 10_240,
        csp_directives: str = "default-src 'self'",
        metrics: Optional[MetricsCollector] = None,
    ):
        self.abuse_tracker = abuse_tracker
        self.screener = screener or RequestScreener()
        self.rate_limiter = rate_limiter
        self.max_body_bytes = max_body_bytes
        self.headers = security_headers(csp_directives)
        self.metrics = metrics
        self.logger = get_logger("gateway.security_middleware")

    async def dispatch(self, request: Request, call_next):
        client_ip = get_client_ip(request.headers, request.client.host if request.client else None)
        request.state.client_ip = client_ip
        set_user_context(client_ip=client_ip)

        if self.abuse_tracker.is_blocked(client_ip):
            if self.metrics:
                self.metrics.increment_counter("blocked_requests_total")
            self.logger.warning("Blocked request from blocked address", client_ip=client_ip)
            return self._refuse(AccessDeniedError())

        if self._declared_length(request) > self.max_body_bytes:
            return self._refuse_oversized(request, client_ip)

        raw = await request.body()
        if len(raw) > self.max_body_bytes:
            return self._refuse_oversized(request, client_ip)

        content_type = request.headers.get("content-type", "")
        body = self._body_text(raw, content_type)
        query = " ".join(f"{key}={value}" for key, value in request.query_params.multi_items())

        verdict = self.screener.screen(
            request.method,
            user_agent=request.headers.get("user-agent", ""),
            content_type=content_type,
            body=body,
            query=query,
        )
        if verdict is not None:
            self.abuse_tracker.record_failure(client_ip, trigger=verdict.trigger)
            self.logger.warning(
                "Request failed screening",
                client_ip=client_ip,
                trigger=verdict.trigger,
                method=request.method,
                path=request.url.path,
            )
            if verdict.status_code == 403:
                return self._refuse(AccessDeniedError(verdict.message, details={"trigger": verdict.trigger}))
            return self._refuse(ValidationError(verdict.message, details={"trigger": verdict.trigger}))

        if self.rate_limiter is not None:
            limit_type = self.rate_limiter.categorize_endpoint(request.url.path)
            if limit_type is not None:
                result = self.rate_limiter.check_rate_limit(client_ip, limit_type)
                if not result["allowed"]:
                    self.abuse_tracker.record_failure(client_ip, trigger="rate_limited")
                    if self.metrics:
                        self.metrics.increment_counter("rate_limited_requests_total", limit_type=limit_type)
                    return self._refuse(
                        RateLimitError(
                            "Too many requests, please try again later.",
                            details={"limit": result["limit"], "retry_after": result["retry_after"]},
                        ),
                        extra_headers={"Retry-After": str(result["retry_after"])},
                    )

        response = await call_next(request)
        response.headers.update(self.headers)
        return response

    def _declared_length(self, request: Request) -> int:
        declared = request.headers.get("content-length")
        if not declared:
            return 0
        try:
            return int(declared)
        except ValueError:
            return 0

    def _refuse_oversized(self, request: Request, client_ip: str) -> JSONResponse:
        self.abuse_tracker.record_failure(client_ip, trigger="oversized_body")
        self.logger.warning(
            "Request body too large",
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
            max_body_bytes=self.max_body_bytes,
        )
        return self._refuse(
            PayloadTooLargeError(details={"max_body_bytes": self.max_body_bytes})
        )

    def _body_text(self, raw: bytes, content_type: str) -> str:
        if not raw:
            return ""
        text = raw.decode("utf-8", errors="replace")
        if content_type.lower().startswith("application/x-www-form-urlencoded"):
            text = unquote_plus(text)
        return text

    def _refuse(self, error, extra_headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        headers = dict(self.headers)
        if extra_headers:
            headers.update(extra_headers)
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_response().model_dump(),
            headers=headers,
        )
