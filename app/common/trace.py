# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional


_trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="-")
_user_id_ctx: ContextVar[Optional[int]] = ContextVar("user_id", default=None)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def set_trace_id(trace_id: str) -> None:
    _trace_id_ctx.set(trace_id or "-")


def get_trace_id() -> str:
    return _trace_id_ctx.get() or "-"


def set_user_id(user_id: Optional[int]) -> None:
    """鉴权通过后写入，日志里可以按用户排障"""
    _user_id_ctx.set(user_id)


def get_user_id() -> str:
    uid = _user_id_ctx.get()
    return "-" if uid is None else str(uid)
