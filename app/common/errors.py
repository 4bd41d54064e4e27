# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class AppError(Exception):
    """异常统一"""
    code: str
    message: str
    status_code: int = 400
    detail: Optional[Any] = None


class BadRequestError(AppError):
    def __init__(self, code: str = "BAD_REQUEST", message: str = "bad request", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=400, detail=detail)


class UnauthorizedError(AppError):
    def __init__(self, code: str = "UNAUTHORIZED", message: str = "unauthorized", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=401, detail=detail)


class PaymentRequiredError(AppError):
    def __init__(self, code: str = "PAYMENT_REQUIRED", message: str = "payment required", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=402, detail=detail)


class ForbiddenError(AppError):
    def __init__(self, code: str = "FORBIDDEN", message: str = "forbidden", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=403, detail=detail)


class NotFoundError(AppError):
    def __init__(self, code: str = "NOT_FOUND", message: str = "not found", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=404, detail=detail)


class ConflictError(AppError):
    def __init__(self, code: str = "CONFLICT", message: str = "conflict", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=409, detail=detail)


class TooManyRequestsError(AppError):
    def __init__(self, code: str = "TOO_MANY_REQUESTS", message: str = "too many requests", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=429, detail=detail)


class InternalError(AppError):
    def __init__(self, code: str = "INTERNAL_ERROR", message: str = "internal server error", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=500, detail=detail)


class UpstreamError(AppError):
    """第三方服务（OpenAI / Stripe / R2）调用失败"""

    def __init__(self, code: str = "UPSTREAM_ERROR", message: str = "upstream service error", detail: Any = None) -> None:
        super().__init__(code=code, message=message, status_code=502, detail=detail)
