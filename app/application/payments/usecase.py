# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.products.usecase import has_completed_purchase, to_product_out
from app.common.errors import BadRequestError, ForbiddenError, InternalError, NotFoundError
from app.domain import models, schemas
from app.infra import storage_r2
from app.infra.config import settings
from app.infra.stripe_gateway import StripeGateway
from app.services import upload_rules

logger = logging.getLogger(__name__)

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"

NO_CACHE_HEADERS = {
    "Cache-Control": "private, no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Access-Control-Expose-Headers": "Content-Disposition, Content-Length",
}


def to_cents(price: float) -> int:
    return int(math.floor(float(price) * 100 + 0.5))


def safe_title(title: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", title or "")[:100].lower()


@dataclass
class ProductDownload:
    """data 为空时表示存储读取失败，返回 fallback JSON"""
    filename: str
    content_type: str
    data: Optional[bytes] = None
    headers: Dict[str, str] = field(default_factory=dict)
    fallback: Optional[Dict[str, Any]] = None


class PaymentsUsecase:
    def __init__(self, gateway: StripeGateway) -> None:
        self._gateway = gateway

    # ---------- 下单 ----------

    def create_payment_intent(
        self,
        db: Session,
        *,
        user: models.Profile,
        product_id: int,
    ) -> schemas.PaymentIntentResponse:
        product = db.get(models.Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", message="Product not found")

        amount = to_cents(product.price)
        currency = settings.STRIPE_CURRENCY
        intent = self._gateway.create_payment_intent(
            amount=amount,
            currency=currency,
            metadata={
                "product_id": str(product.id),
                "user_id": str(user.id),
                "expert_id": str(product.expert_id),
                "product_type": product.product_type,
            },
            description=f"Purchase: {product.title}",
        )

        purchase = models.Purchase(
            user_id=user.id,
            product_id=product.id,
            expert_id=product.expert_id,
            amount=product.price,
            currency=currency,
            status="pending",
            payment_intent_id=intent["id"],
        )
        try:
            db.add(purchase)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Purchase insert failed, cancelling intent %s: %s", intent["id"], e)
            try:
                self._gateway.cancel_payment_intent(intent["id"])
            except Exception as cancel_err:
                logger.error("Failed to cancel payment intent %s: %s", intent["id"], cancel_err)
            raise InternalError(code="PURCHASE_RECORD_FAILED", message="Failed to create purchase record") from e

        db.refresh(purchase)
        logger.info("Payment intent created: intent=%s purchase=%s amount=%s", intent["id"], purchase.id, amount)
        return schemas.PaymentIntentResponse(
            client_secret=intent["client_secret"],
            payment_intent_id=intent["id"],
            purchase_id=purchase.id,
            amount=amount,
            currency=currency,
        )

    # ---------- webhook ----------

    def handle_webhook(self, db: Session, *, payload: bytes, signature: Optional[str]) -> schemas.WebhookAck:
        if not signature:
            raise BadRequestError(code="MISSING_SIGNATURE", message="No stripe signature")

        event = self._gateway.construct_event(payload, signature)
        event_type = event.get("type")
        intent = (event.get("data") or {}).get("object") or {}
        logger.info("Processing event type: %s", event_type)

        if event_type == EVENT_SUCCEEDED:
            self._mark_succeeded(db, intent)
        elif event_type == EVENT_FAILED:
            self._mark_failed(db, intent)
        else:
            logger.info("Unhandled event type: %s", event_type)
        return schemas.WebhookAck()

    def _purchase_by_intent(self, db: Session, intent_id: Optional[str]) -> Optional[models.Purchase]:
        if not intent_id:
            return None
        purchase = db.scalars(
            select(models.Purchase).where(models.Purchase.payment_intent_id == intent_id)
        ).first()
        if purchase is None:
            logger.warning("No purchase found for payment intent %s", intent_id)
        return purchase

    def _mark_succeeded(self, db: Session, intent: Dict[str, Any]) -> None:
        purchase = self._purchase_by_intent(db, intent.get("id"))
        if purchase is None:
            return
        methods = intent.get("payment_method_types") or []
        purchase.status = "completed"
        purchase.payment_method = methods[0] if methods else "card"
        purchase.meta = {
            **(purchase.meta or {}),
            **(intent.get("metadata") or {}),
            "stripe_customer": intent.get("customer"),
            "payment_method_details": methods,
        }
        purchase.purchased_at = int(time.time())
        db.add(purchase)
        db.commit()
        logger.info("PaymentIntent %s succeeded, purchase %s completed", intent.get("id"), purchase.id)

    def _mark_failed(self, db: Session, intent: Dict[str, Any]) -> None:
        purchase = self._purchase_by_intent(db, intent.get("id"))
        if purchase is None:
            return
        purchase.status = "failed"
        purchase.failure_reason = ((intent.get("last_payment_error") or {}).get("message") or "")[:512] or None
        db.add(purchase)
        db.commit()
        logger.info("PaymentIntent %s failed, purchase %s marked failed", intent.get("id"), purchase.id)

    # ---------- 购买记录 ----------

    def list_user_purchases(self, db: Session, *, user: models.Profile) -> List[schemas.PurchaseOut]:
        stmt = (
            select(models.Purchase)
            .where(models.Purchase.user_id == user.id, models.Purchase.status == "completed")
            .order_by(models.Purchase.purchased_at.desc(), models.Purchase.id.desc())
        )
        return [
            schemas.PurchaseOut(
                id=p.id,
                product_id=p.product_id,
                expert_id=p.expert_id,
                amount=float(p.amount),
                currency=p.currency,
                status=p.status,
                payment_method=p.payment_method,
                purchased_at=p.purchased_at,
                created_at=p.created_at,
                product=to_product_out(p.product) if p.product is not None else None,
            )
            for p in db.scalars(stmt).all()
        ]

    def has_user_purchased(self, db: Session, *, user: models.Profile, product_id: int) -> bool:
        return has_completed_purchase(db, user_id=user.id, product_id=product_id)

    # ---------- 权益校验 / 下载 ----------

    def verify_purchase(
        self,
        db: Session,
        *,
        user: models.Profile,
        product_id: int,
        file_id: Optional[int] = None,
    ) -> schemas.PurchaseAccess:
        product, row, key = self._locate(db, user=user, product_id=product_id, file_id=file_id)
        return schemas.PurchaseAccess(
            product_id=product.id,
            file_id=row.id if row is not None else None,
            file_key=key,
            download_url=storage_r2.build_url(key),
        )

    def download_product(
        self,
        db: Session,
        *,
        user: models.Profile,
        product_id: int,
        file_id: Optional[int] = None,
    ) -> ProductDownload:
        product, row, key = self._locate(db, user=user, product_id=product_id, file_id=file_id)

        if product.product_type == "video":
            ext = "mp4"
        else:
            ext = upload_rules.file_extension(key, default="pdf")
        filename = f"{safe_title(product.title)}.{ext}"
        content_type = (row.mime_type if row is not None else None) or (
            "video/mp4" if product.product_type == "video" else "application/pdf"
        )

        try:
            data = storage_r2.read_bytes(key)
        except Exception as e:
            logger.error("Error reading product file from storage: key=%s err=%s", key, e)
            return ProductDownload(
                filename=filename,
                content_type="application/json",
                fallback={
                    "has_access": True,
                    "product": {
                        "id": product.id,
                        "title": product.title,
                        "download_url": storage_r2.presigned_url(key),
                        "product_type": product.product_type,
                    },
                    "warning": "Proxying failed, using direct URL (may not work in Safari)",
                },
            )

        headers = {
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(data)),
            **NO_CACHE_HEADERS,
        }
        return ProductDownload(filename=filename, content_type=content_type, data=data, headers=headers)

    def _locate(
        self,
        db: Session,
        *,
        user: models.Profile,
        product_id: int,
        file_id: Optional[int],
    ) -> Tuple[models.Product, Optional[models.ProductFile], str]:
        if not has_completed_purchase(db, user_id=user.id, product_id=product_id):
            raise ForbiddenError(
                code="NOT_PURCHASED",
                message="Product not purchased or purchase not completed",
                detail={"has_access": False},
            )

        product = db.get(models.Product, product_id)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", message="Product not found", detail={"has_access": False})

        files = list(product.files or [])
        if file_id is not None:
            row = next((f for f in files if f.id == file_id), None)
            if row is None:
                raise NotFoundError(code="FILE_NOT_FOUND", message="product file not found")
            return product, row, row.file_url

        row = next((f for f in files if f.is_primary), None)
        if row is not None:
            return product, row, row.file_url

        key = product.file_url or product.primary_file_url
        if not key:
            logger.warning("Product file URL not found: product=%s", product.id)
            raise NotFoundError(
                code="FILE_URL_NOT_FOUND",
                message="Product file URL not found in database",
                detail={
                    "has_access": True,
                    "debug": {
                        "product_id": product.id,
                        "file_url": product.file_url,
                        "primary_file_url": product.primary_file_url,
                    },
                },
            )
        return product, None, key
