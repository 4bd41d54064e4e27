# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_experts_usecase, get_products_usecase
from app.application.experts.usecase import ExpertsUsecase
from app.application.products.usecase import ProductsUsecase
from app.domain import schemas


router = APIRouter(prefix="/experts", tags=["experts"])


@router.get("", response_model=List[schemas.ExpertOut])
def list_experts(
    accepts_new_clients: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    uc: ExpertsUsecase = Depends(get_experts_usecase),
):
    return uc.list_experts(db, accepts_new_clients=accepts_new_clients)


@router.get("/{expert_id}", response_model=schemas.ExpertOut)
def get_expert(
    expert_id: int,
    db: Session = Depends(get_db),
    uc: ExpertsUsecase = Depends(get_experts_usecase),
):
    return uc.get_expert(db, expert_id=expert_id)


@router.get("/{expert_id}/products", response_model=schemas.ProductListResponse)
def list_expert_products(
    expert_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.list_products(db, expert_id=expert_id, page=page, limit=limit)

