# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import hashlib
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt

from app.common.errors import UnauthorizedError
from app.infra.config import settings

ACCESS_TOKEN_TYPE = "access"


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int


class TokenService:
    """access token 为 HS256 JWT，refresh token 为随机串（库里只存 sha256）"""

    def __init__(self, secret: Optional[str] = None) -> None:
        self._jwt_secret = secret or settings.JWT_SECRET_KEY
        self._jwt_alg = "HS256"

    @property
    def access_ttl(self) -> int:
        return int(settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60

    @property
    def refresh_ttl(self) -> int:
        return int(settings.REFRESH_TOKEN_EXPIRE_DAYS) * 86400

    def issue_pair(self, *, profile_id: int, email: str, now: Optional[int] = None) -> TokenPair:
        now = int(time.time()) if now is None else now
        access = self.encode_access_token(profile_id=profile_id, email=email, now=now)
        return TokenPair(
            access_token=access,
            refresh_token=secrets.token_urlsafe(48),
            expires_in=self.access_ttl,
            refresh_expires_in=self.refresh_ttl,
        )

    def encode_access_token(self, *, profile_id: int, email: str, now: Optional[int] = None) -> str:
        now = int(time.time()) if now is None else now
        payload: Dict[str, Any] = {
            "sub": str(profile_id),
            "email": email,
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(payload, self._jwt_secret, algorithm=self._jwt_alg)

    def profile_id_from_token(self, token: str) -> int:
        try:
            payload = jwt.decode(token, self._jwt_secret, algorithms=[self._jwt_alg])
        except jwt.ExpiredSignatureError as e:
            raise UnauthorizedError(code="TOKEN_EXPIRED", message="access token expired") from e
        except jwt.PyJWTError as e:
            raise UnauthorizedError(code="TOKEN_INVALID", message="invalid access token") from e

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise UnauthorizedError(code="TOKEN_INVALID", message="invalid access token")
        try:
            return int(payload.get("sub"))
        except (TypeError, ValueError) as e:
            raise UnauthorizedError(code="TOKEN_INVALID", message="invalid access token") from e

    def hash_refresh_token(self, refresh_token: str) -> str:
        return hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()

    def refresh_expire_at(self, now: Optional[int] = None) -> int:
        now = int(time.time()) if now is None else now
        return now + self.refresh_ttl
