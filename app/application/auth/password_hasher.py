# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from typing import Optional

import bcrypt

from app.common.errors import BadRequestError
from app.infra.config import settings

# bcrypt 只使用前 72 字节
BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    def __init__(self, rounds: Optional[int] = None) -> None:
        self._rounds = rounds or int(settings.BCRYPT_ROUNDS)

    def hash(self, password: str) -> str:
        raw = (password or "").encode("utf-8")
        if len(raw) > BCRYPT_MAX_BYTES:
            raise BadRequestError(code="PASSWORD_TOO_LONG", message="password must be at most 72 bytes")
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: Optional[str]) -> bool:
        if not password_hash:
            return False
        raw = (password or "").encode("utf-8")
        if len(raw) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(raw, password_hash.encode("utf-8"))
        except ValueError:
            # 库里存的不是合法 bcrypt hash
            return False
