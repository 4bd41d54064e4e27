# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.common.trace import new_trace_id, set_trace_id, set_user_id

logger = logging.getLogger("whisperoo.access")


class TraceIdMiddleware(BaseHTTPMiddleware):
    """注入 trace_id，并记录一条访问日志"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Request-Id") or new_trace_id()
        set_trace_id(trace_id)
        set_user_id(None)

        started = time.perf_counter()
        response: Response = await call_next(request)
        cost_ms = int((time.perf_counter() - started) * 1000)

        response.headers["X-Trace-Id"] = trace_id
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, cost_ms)
        return response
