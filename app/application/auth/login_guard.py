# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional

from app.common.errors import TooManyRequestsError
from app.infra.config import settings
from app.infra.ylogger import ylogger


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass
class FailureRecord:
    email: str
    fail_count: int = 0
    first_failed_at: int = 0
    locked_until: int = 0


class LoginGuard:
    """ 登录失败计数 + 短暂锁定(进程内) 多实例部署建议 Redis """

    def __init__(self) -> None:
        self._store: Dict[str, FailureRecord] = {}

    def ensure_not_locked(self, email: str, now: Optional[int] = None) -> None:
        email = normalize_email(email)
        now = int(time.time()) if now is None else now
        rec = self._store.get(email)
        if rec is not None and rec.locked_until and now < rec.locked_until:
            raise TooManyRequestsError(
                code="LOGIN_LOCKED",
                message="too many failed login attempts",
                detail={"retry_after": rec.locked_until - now},
            )

    def record_failure(self, email: str, now: Optional[int] = None) -> int:
        """记一次失败，返回锁定前剩余可尝试次数"""
        email = normalize_email(email)
        now = int(time.time()) if now is None else now
        max_fails = int(settings.LOGIN_MAX_FAILS)
        window = int(settings.LOGIN_LOCK_SECONDS)

        rec = self._store.get(email)
        # 锁定结束或窗口过期后重新计数
        if rec is None or (rec.locked_until and now >= rec.locked_until) or now - rec.first_failed_at > window:
            rec = FailureRecord(email=email, first_failed_at=now)

        rec.fail_count += 1
        if rec.fail_count >= max_fails:
            rec.locked_until = now + window
            ylogger.warning("Login locked: email=%s fails=%s", email, rec.fail_count)
        self._store[email] = rec
        return max(max_fails - rec.fail_count, 0)

    def reset(self, email: str) -> None:
        self._store.pop(normalize_email(email), None)
