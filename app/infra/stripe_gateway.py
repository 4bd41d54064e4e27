# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

"""Stripe 网关

- 只包一层 PaymentIntent / Webhook 调用，业务逻辑在 application/payments。
- 未配置 STRIPE_SECRET_KEY 时，调用会抛出明确错误。
"""

from typing import Any, Dict, Optional

import stripe

from app.common.errors import BadRequestError, InternalError, UpstreamError
from app.infra.config import settings
from app.infra.ylogger import ylogger


class StripeGateway:
    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

    def _ensure_key(self) -> None:
        if not self.secret_key:
            raise InternalError(code="STRIPE_NOT_CONFIGURED", message="Stripe is not configured")
        stripe.api_key = self.secret_key

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        description: str,
    ) -> Dict[str, Any]:
        self._ensure_key()
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                description=description,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            ylogger.error("Stripe create payment intent failed: %s", e)
            raise UpstreamError(code="STRIPE_ERROR", message="failed to create payment intent", detail=str(e))

        return {"id": intent["id"], "client_secret": intent["client_secret"]}

    def cancel_payment_intent(self, intent_id: str) -> None:
        self._ensure_key()
        try:
            stripe.PaymentIntent.cancel(intent_id)
        except stripe.StripeError as e:
            ylogger.error("Stripe cancel payment intent failed: id=%s err=%s", intent_id, e)
            raise UpstreamError(code="STRIPE_ERROR", message="failed to cancel payment intent", detail=str(e))

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise InternalError(code="WEBHOOK_SECRET_MISSING", message="Webhook secret not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            ylogger.warning("Stripe webhook signature verification failed: %s", e)
            raise BadRequestError(code="INVALID_SIGNATURE", message="Webhook signature verification failed")

        return event.to_dict() if hasattr(event, "to_dict") else dict(event)


_gateway: Optional[StripeGateway] = None


def get_stripe_gateway() -> StripeGateway:
    """FastAPI 依赖：测试里可以通过 dependency_overrides 替换"""
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway
