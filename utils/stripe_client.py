"""Stripe Checkout helpers for the card rail"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import stripe

from core import config
from core.config import logger


def to_minor_units(amount) -> int:
    """725000.00 -> 72500000 (centavos/cents)"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_total) -> Decimal:
    return (Decimal(int(amount_total or 0)) / Decimal(100)).quantize(Decimal("0.01"))


def create_checkout_session(
    collection_id: int,
    pricing_tier_id: int,
    product_name: str,
    description: str,
    fiat_price,
    email: str,
    user_id: Optional[str] = None,
    affiliate_code: Optional[str] = None,
) -> tuple[str, str]:
    """Create a one-off Checkout session and return (session_id, url).

    Everything the webhook needs to settle the purchase travels in metadata;
    Stripe metadata values are strings.
    """
    if not config.STRIPE_SECRET_KEY:
        raise RuntimeError("STRIPE_SECRET_KEY not configured")
    stripe.api_key = config.STRIPE_SECRET_KEY

    session = stripe.checkout.Session.create(
        mode="payment",
        payment_method_types=["card"],
        line_items=[{
            "price_data": {
                "currency": config.CURRENCY_CODE.lower(),
                "product_data": {"name": product_name, "description": description},
                "unit_amount": to_minor_units(fiat_price),
            },
            "quantity": 1,
        }],
        customer_email=email,
        success_url=f"{config.APP_URL}/purchase/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{config.APP_URL}/purchase/cancelled?collection_id={collection_id}",
        metadata={
            "type": "OWNERSHIP",
            "collectionId": str(collection_id),
            "pricingTierId": str(pricing_tier_id),
            "email": email,
            "userId": user_id or "",
            "affiliateCode": affiliate_code or "",
            "paymentMethod": "FIAT",
        },
    )
    logger.info(f"[stripe] checkout session {session.id} created for collection={collection_id} tier={pricing_tier_id}")
    return session.id, session.url


def construct_event(payload: bytes, sig_header: str):
    """Verify the Stripe-Signature header; raises stripe.SignatureVerificationError or ValueError"""
    if not config.STRIPE_WEBHOOK_SECRET:
        raise stripe.SignatureVerificationError("STRIPE_WEBHOOK_SECRET not configured", sig_header)
    return stripe.Webhook.construct_event(payload, sig_header, config.STRIPE_WEBHOOK_SECRET)
