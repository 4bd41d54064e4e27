# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.api.deps import get_current_profile, get_db, get_payments_usecase
from app.application.payments.usecase import PaymentsUsecase
from app.domain import models, schemas


router = APIRouter(prefix="/payments", tags=["payments"])
purchases_router = APIRouter(prefix="/purchases", tags=["payments"])


@router.post("/intents", response_model=schemas.PaymentIntentResponse)
def create_payment_intent(
    req: schemas.PaymentIntentRequest,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: PaymentsUsecase = Depends(get_payments_usecase),
):
    return uc.create_payment_intent(db, user=user, product_id=req.product_id)


@router.post("/webhook", response_model=schemas.WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    db: Session = Depends(get_db),
    uc: PaymentsUsecase = Depends(get_payments_usecase),
):
    # 验签需要原始 body
    payload = await request.body()
    return await asyncio.to_thread(uc.handle_webhook, db, payload=payload, signature=stripe_signature)


@purchases_router.get("", response_model=List[schemas.PurchaseOut])
def list_purchases(
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: PaymentsUsecase = Depends(get_payments_usecase),
):
    return uc.list_user_purchases(db, user=user)


@purchases_router.get("/{product_id}/status")
def has_purchased(
    product_id: int,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: PaymentsUsecase = Depends(get_payments_usecase),
):
    return {"purchased": uc.has_user_purchased(db, user=user, product_id=product_id)}


@purchases_router.get("/{product_id}/access", response_model=schemas.PurchaseAccess)
def verify_purchase(
    product_id: int,
    file_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: PaymentsUsecase = Depends(get_payments_usecase),
):
    return uc.verify_purchase(db, user=user, product_id=product_id, file_id=file_id)


@purchases_router.get("/{product_id}/download")
def download_product(
    product_id: int,
    file_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: PaymentsUsecase = Depends(get_payments_usecase),
):
    result = uc.download_product(db, user=user, product_id=product_id, file_id=file_id)
    if result.data is None:
        return JSONResponse(content=result.fallback or {})
    return Response(content=result.data, media_type=result.content_type, headers=result.headers)
