# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from app.api.deps import get_current_profile, get_db, get_profile_usecase
from app.application.profile.usecase import ProfileUsecase
from app.domain import models, schemas


router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=schemas.ProfileOut)
def get_profile(
    profile: models.Profile = Depends(get_current_profile),
    uc: ProfileUsecase = Depends(get_profile_usecase),
):
    return uc.get_profile(profile)


@router.patch("", response_model=schemas.ProfileOut)
def update_profile(
    req: schemas.ProfileUpdateRequest,
    db: Session = Depends(get_db),
    profile: models.Profile = Depends(get_current_profile),
    uc: ProfileUsecase = Depends(get_profile_usecase),
):
    return uc.update_profile(db, profile=profile, req=req)


@router.patch("/expert", response_model=schemas.ProfileOut)
def update_expert_profile(
    req: schemas.ExpertProfileUpdateRequest,
    db: Session = Depends(get_db),
    profile: models.Profile = Depends(get_current_profile),
    uc: ProfileUsecase = Depends(get_profile_usecase),
):
    return uc.update_expert_profile(db, profile=profile, req=req)


@router.post("/avatar", response_model=schemas.ProfileOut)
async def upload_avatar(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    profile: models.Profile = Depends(get_current_profile),
    uc: ProfileUsecase = Depends(get_profile_usecase),
):
    data = await file.read()
    return await asyncio.to_thread(
        uc.upload_avatar,
        db,
        profile=profile,
        data=data,
        filename=file.filename or "avatar",
        content_type=file.content_type,
    )
