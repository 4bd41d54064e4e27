# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.auth.login_guard import LoginGuard, normalize_email
from app.application.auth.password_hasher import PasswordHasher
from app.application.auth.token_service import TokenService
from app.common.errors import ConflictError, UnauthorizedError
from app.domain import models
from app.infra.ylogger import ylogger


class AuthUsecase:
    def __init__(self, hasher: PasswordHasher, guard: LoginGuard, tokens: TokenService) -> None:
        self._hasher = hasher
        self._guard = guard
        self._tokens = tokens
        self._dummy_hash: Optional[str] = None

    def register(
        self,
        db: Session,
        *,
        email: str,
        password: str,
        first_name: Optional[str] = None,
    ) -> "IssuedTokenPair":
        email = normalize_email(email)
        existed = db.scalars(select(models.Profile).where(models.Profile.email == email)).first()
        if existed is not None:
            raise ConflictError(code="EMAIL_ALREADY_REGISTERED", message="email already registered")

        profile = models.Profile(
            email=email,
            password_hash=self._hasher.hash(password),
            first_name=(first_name or "").strip() or None,
            account_type="parent",
            onboarded=False,
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        ylogger.info("Profile registered: id=%s", profile.id)

        return self._issue_tokens(db, profile)

    def login(self, db: Session, *, email: str, password: str) -> "IssuedTokenPair":
        email = normalize_email(email)
        self._guard.ensure_not_locked(email)

        profile = db.scalars(select(models.Profile).where(models.Profile.email == email)).first()
        if profile is None:
            # 未注册邮箱也走一次 bcrypt，响应时间与密码错误一致
            self._hasher.verify(password, self._placeholder_hash())
            ok = False
        else:
            ok = self._hasher.verify(password, profile.password_hash)

        if not ok:
            remain = self._guard.record_failure(email)
            ylogger.info("Login failed: email=%s remain=%s", email, remain)
            raise UnauthorizedError(
                code="INVALID_CREDENTIALS",
                message="invalid email or password",
                detail={"remain": remain},
            )

        self._guard.reset(email)
        return self._issue_tokens(db, profile)

    def _placeholder_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("placeholder-password")
        return self._dummy_hash

    def refresh(self, db: Session, *, refresh_token: str) -> "IssuedTokenPair":
        now = int(time.time())
        sess = self._find_session(db, refresh_token)
        if sess is None or sess.revoked_at is not None:
            raise UnauthorizedError(code="REFRESH_INVALID", message="invalid refresh token")
        if now > int(sess.expires_at):
            raise UnauthorizedError(code="REFRESH_EXPIRED", message="refresh token expired")

        profile = db.get(models.Profile, sess.profile_id)
        if profile is None:
            raise UnauthorizedError(code="REFRESH_INVALID", message="invalid refresh token")

        # 轮换：旧 refresh_token 作废
        sess.revoked_at = now
        sess.last_seen_at = now
        db.add(sess)

        return self._issue_tokens(db, profile)

    def logout(self, db: Session, *, refresh_token: str) -> None:
        now = int(time.time())
        sess = self._find_session(db, refresh_token)
        if sess is None:
            return
        sess.revoked_at = now
        sess.last_seen_at = now
        db.add(sess)
        db.commit()

    def _find_session(self, db: Session, refresh_token: str) -> Optional[models.AuthSession]:
        token_hash = self._tokens.hash_refresh_token(refresh_token)
        return db.scalars(
            select(models.AuthSession).where(models.AuthSession.token_hash == token_hash)
        ).first()

    def _issue_tokens(self, db: Session, profile: models.Profile) -> "IssuedTokenPair":
        now = int(time.time())
        pair = self._tokens.issue_pair(profile_id=profile.id, email=profile.email, now=now)

        expires_at = self._tokens.refresh_expire_at(now)
        sess = models.AuthSession(
            profile_id=profile.id,
            token_hash=self._tokens.hash_refresh_token(pair.refresh_token),
            created_at=now,
            expires_at=expires_at,
            revoked_at=None,
            last_seen_at=now,
        )
        db.add(sess)
        db.commit()
        return IssuedTokenPair(
            user_id=profile.id,
            email=profile.email,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
            refresh_expires_in=max(expires_at - now, 0),
        )


@dataclass
class IssuedTokenPair:
    user_id: int
    email: str
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
