# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_profile, get_db, get_profile_usecase
from app.application.profile.usecase import ProfileUsecase
from app.domain import models, schemas


router = APIRouter(prefix="/onboarding", tags=["onboarding"])


@router.get("/progress", response_model=schemas.OnboardingProgress)
def get_progress(
    profile: models.Profile = Depends(get_current_profile),
    uc: ProfileUsecase = Depends(get_profile_usecase),
):
    return uc.get_onboarding_progress(profile)


@router.post("/steps/{step_name}", response_model=schemas.OnboardingProgress)
def complete_step(
    step_name: str,
    req: schemas.OnboardingStepRequest,
    db: Session = Depends(get_db),
    profile: models.Profile = Depends(get_current_profile),
    uc: ProfileUsecase = Depends(get_profile_usecase),
):
    return uc.complete_onboarding_step(db, profile=profile, step_name=step_name, step_data=req.data)
