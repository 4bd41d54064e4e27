# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.application.auth.login_guard import LoginGuard
from app.application.auth.password_hasher import PasswordHasher
from app.application.auth.token_service import TokenService
from app.application.auth.usecase import AuthUsecase
from app.application.chat.context import ChatContextService
from app.application.chat.summary import SessionSummaryService
from app.application.chat.usecase import ChatUsecase
from app.application.experts.usecase import ExpertsUsecase
from app.application.kids.usecase import KidsUsecase
from app.application.payments.usecase import PaymentsUsecase
from app.application.products.uploader import ProductFileUploader
from app.application.products.usecase import ProductsUsecase
from app.application.profile.usecase import ProfileUsecase
from app.common.errors import ForbiddenError, UnauthorizedError
from app.common.trace import set_user_id
from app.domain import models
from app.infra.db import get_db
from app.infra.stripe_gateway import StripeGateway, get_stripe_gateway
from app.llm.model_selector import LlmModelSelector
from app.llm.registry import build_default_registry

__all__ = ["get_db", "get_stripe_gateway"]

_login_guard_singleton = LoginGuard()
_token_singleton = TokenService()
_auth_uc_singleton = AuthUsecase(PasswordHasher(), _login_guard_singleton, _token_singleton)

_kids_uc_singleton = KidsUsecase()
_profile_uc_singleton = ProfileUsecase(_kids_uc_singleton)

_selector_singleton = LlmModelSelector(build_default_registry())
_experts_uc_singleton = ExpertsUsecase(_selector_singleton)
_context_singleton = ChatContextService()
_summary_singleton = SessionSummaryService(_selector_singleton)
_chat_uc_singleton = ChatUsecase(
    _selector_singleton,
    _experts_uc_singleton,
    _context_singleton,
    _summary_singleton,
)

_products_uc_singleton = ProductsUsecase(ProductFileUploader())


def get_auth_usecase() -> AuthUsecase:
    return _auth_uc_singleton


def get_profile_usecase() -> ProfileUsecase:
    return _profile_uc_singleton


def get_kids_usecase() -> KidsUsecase:
    return _kids_uc_singleton


def get_model_selector() -> LlmModelSelector:
    return _selector_singleton


def get_experts_usecase() -> ExpertsUsecase:
    return _experts_uc_singleton


def get_chat_context_service() -> ChatContextService:
    return _context_singleton


def get_summary_service() -> SessionSummaryService:
    return _summary_singleton


def get_chat_usecase() -> ChatUsecase:
    return _chat_uc_singleton


def get_products_usecase() -> ProductsUsecase:
    return _products_uc_singleton


def get_payments_usecase(gateway: StripeGateway = Depends(get_stripe_gateway)) -> PaymentsUsecase:
    return PaymentsUsecase(gateway)


_bearer = HTTPBearer(auto_error=False)


def get_current_profile(
    db: Session = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> models.Profile:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError(code="TOKEN_MISSING", message="missing access token")

    profile_id = _token_singleton.profile_id_from_token(credentials.credentials)
    profile = db.get(models.Profile, profile_id)
    if profile is None:
        raise UnauthorizedError(code="TOKEN_USER_NOT_FOUND", message="profile not found")
    set_user_id(profile.id)
    return profile


def get_current_expert(profile: models.Profile = Depends(get_current_profile)) -> models.Profile:
    if profile.account_type != "expert":
        raise ForbiddenError(code="NOT_AN_EXPERT", message="expert account required")
    return profile
