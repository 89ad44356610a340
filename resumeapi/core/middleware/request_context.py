import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from resumeapi.core.logging import request_id_ctx_var, latency_bucket_ms
from resumeapi.core.metrics import http_requests_total, normalize_path

# Probes are too chatty to log on every hit
_QUIET_PATHS = frozenset({"/healthz", "/readyz", "/metrics"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request_id for the request, count it, and log completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid
        path = normalize_path(request.url.path)
        http_requests_total.inc(labels={
            "method": request.method.upper(),
            "path": path,
            "status": str(response.status_code),
        })

        if request.url.path not in _QUIET_PATHS:
            logging.getLogger("resumeapi").info(
                "request.complete",
                extra={
                    "request_id": rid,
                    "path": path,
                    "method": request.method,
                    "status": response.status_code,
                    "latency_bucket": latency_bucket_ms(duration_ms),
                },
            )
        return response
