# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_profile, get_db, get_kids_usecase
from app.application.kids.usecase import KidsUsecase
from app.domain import models, schemas


router = APIRouter(prefix="/kids", tags=["kids"])


@router.get("", response_model=List[schemas.KidOut])
def list_kids(
    db: Session = Depends(get_db),
    parent: models.Profile = Depends(get_current_profile),
    uc: KidsUsecase = Depends(get_kids_usecase),
):
    return uc.list_kids(db, parent=parent)


@router.put("", response_model=schemas.SaveKidsResponse)
def save_kids(
    req: schemas.SaveKidsRequest,
    db: Session = Depends(get_db),
    parent: models.Profile = Depends(get_current_profile),
    uc: KidsUsecase = Depends(get_kids_usecase),
):
    return uc.save_kids(db, parent=parent, kids=req.kids)


@router.put("/expecting", response_model=schemas.KidOut)
def save_expecting_baby(
    req: schemas.ExpectingBabyRequest,
    db: Session = Depends(get_db),
    parent: models.Profile = Depends(get_current_profile),
    uc: KidsUsecase = Depends(get_kids_usecase),
):
    return uc.save_expecting_baby(db, parent=parent, due_date=req.due_date, expected_name=req.expected_name)


@router.delete("/{kid_id}")
def delete_kid(
    kid_id: int,
    db: Session = Depends(get_db),
    parent: models.Profile = Depends(get_current_profile),
    uc: KidsUsecase = Depends(get_kids_usecase),
):
    uc.delete_kid(db, parent=parent, kid_id=kid_id)
    return {"ok": True}
