# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_auth_usecase, get_db
from app.application.auth.usecase import AuthUsecase, IssuedTokenPair
from app.domain import schemas


router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(issued: IssuedTokenPair) -> schemas.TokenPairResponse:
    return schemas.TokenPairResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_in=issued.expires_in,
        refresh_expires_in=issued.refresh_expires_in,
        user_id=issued.user_id,
        email=issued.email,
    )


@router.post("/register", response_model=schemas.TokenPairResponse)
def register(
    req: schemas.RegisterRequest,
    db: Session = Depends(get_db),
    uc: AuthUsecase = Depends(get_auth_usecase),
):
    return _token_response(uc.register(db, email=req.email, password=req.password, first_name=req.first_name))


@router.post("/login", response_model=schemas.TokenPairResponse)
def login(
    req: schemas.LoginRequest,
    db: Session = Depends(get_db),
    uc: AuthUsecase = Depends(get_auth_usecase),
):
    return _token_response(uc.login(db, email=req.email, password=req.password))


@router.post("/refresh", response_model=schemas.TokenPairResponse)
def refresh(
    req: schemas.RefreshRequest,
    db: Session = Depends(get_db),
    uc: AuthUsecase = Depends(get_auth_usecase),
):
    return _token_response(uc.refresh(db, refresh_token=req.refresh_token))


@router.post("/logout")
def logout(
    req: schemas.LogoutRequest,
    db: Session = Depends(get_db),
    uc: AuthUsecase = Depends(get_auth_usecase),
):
    uc.logout(db, refresh_token=req.refresh_token)
    return {"ok": True}
