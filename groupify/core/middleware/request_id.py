"""
groupify/core/middleware/request_id.py

Correlates every request with a request id (taken from the incoming header
or minted) and emits one request.complete line per request, tagged with the
analytics group the path addresses.
"""

import logging
import re
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from groupify.core.logging import request_id_ctx_var, latency_bucket_ms

_GROUP_SEGMENT = re.compile(r"/analytics/(?P<group_id>[^/]+)(?:/|$)")

logger = logging.getLogger("groupify")


def group_id_from_path(path: str) -> Optional[str]:
    found = _GROUP_SEGMENT.search(path)
    return found.group("group_id") if found else None


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        request_id = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = request_id

        token = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[self.header_name] = request_id
        logger.info(
            "request.complete",
            extra={
                "request_id": request_id,
                "group_id": group_id_from_path(request.url.path),
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
            },
        )
        return response
