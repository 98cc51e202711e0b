"""Starlette middlewares for compliance headers and request auditing."""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware

from rentalcore.common.security import actor_from_request, context_from_request

logger = logging.getLogger(__name__)

COMPLIANCE_HEADERS = {
    "X-GoBD-Compliant": "true",
    "X-GDPR-Compliant": "true",
    "X-Audit-Enabled": "true",
    "X-Retention-Policy": "active",
}


class ComplianceHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        for name, value in COMPLIANCE_HEADERS.items():
            response.headers[name] = value
        return response


class RequestAuditMiddleware(BaseHTTPMiddleware):
    """Record one ``http_request`` system event per handled request."""

    EXEMPT = {"/health", "/docs", "/openapi.json"}

    async def dispatch(self, request, call_next):
        if request.url.path in self.EXEMPT:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)

        from rentalcore.deps import get_audit_logger

        await get_audit_logger().record_system_event(
            "http_request",
            {
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query,
                "referer": request.headers.get("referer", ""),
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
            actor=actor_from_request(request),
            request=context_from_request(request),
        )
        return response
