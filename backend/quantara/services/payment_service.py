"""
backend/quantara/services/payment_service.py

Purpose:
    Stripe subscription billing: customer creation at sign-up, subscription
    create/cancel, default payment method, and webhook-driven status sync
    into ``users.subscription``.

    The Stripe SDK is blocking; every call goes through run_in_threadpool.

Dependencies:
    - stripe
    - quantara.database
    - quantara.services.audit_service
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
from fastapi import HTTPException, status
from starlette.concurrency import run_in_threadpool

import quantara.database as _db
from quantara.config import settings
from quantara.models.user import SubscriptionStatus
from quantara.services.audit_service import log_audit
from quantara.utils import serialize_doc

logger = logging.getLogger("quantara.payments")


def is_configured() -> bool:
    return bool(settings.STRIPE_SECRET_KEY)


def _configure() -> None:
    if not is_configured():
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Billing is not configured.")
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Item access that tolerates missing keys on dicts and StripeObjects."""
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def _period_end(subscription: Any) -> Optional[datetime]:
    ts = _field(subscription, "current_period_end")
    if ts is None:
        # Newer API versions carry the period on the subscription items.
        items = _field(_field(subscription, "items", {}), "data", [])
        if items:
            ts = _field(items[0], "current_period_end")
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts else None


def _card_summary(payment_method: Any) -> dict:
    card = _field(payment_method, "card", {})
    return {
        "id": _field(payment_method, "id"),
        "brand": _field(card, "brand"),
        "last4": _field(card, "last4"),
        "exp_month": _field(card, "exp_month"),
        "exp_year": _field(card, "exp_year"),
    }


def _require_customer(user: dict) -> str:
    customer_id = (user.get("subscription") or {}).get("customer_id")
    if not customer_id:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            "Customer ID not found. Please contact support.",
        )
    return customer_id


# ---------- Customer / subscription ----------

async def create_customer(email: str) -> Optional[str]:
    """Create the Stripe customer for a new account; None when billing is off."""
    if not is_configured():
        logger.info("Stripe not configured, skipping customer creation for %s", email)
        return None
    _configure()
    customer = await run_in_threadpool(
        stripe.Customer.create, email=email, description=f"Customer for {email}",
    )
    return customer["id"]


async def create_subscription(user: dict, payment_method_id: str) -> dict:
    customer_id = _require_customer(user)
    _configure()

    try:
        await run_in_threadpool(
            stripe.PaymentMethod.attach, payment_method_id, customer=customer_id,
        )
        await run_in_threadpool(
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )
        subscription = await run_in_threadpool(
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": settings.STRIPE_PLAN_PRICE_ID}],
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
        )
    except stripe.StripeError as exc:
        logger.error("Subscription creation failed for customer=%s: %s", customer_id, exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Payment provider error.")

    await _db.db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "subscription.status": _field(subscription, "status", SubscriptionStatus.incomplete.value),
            "subscription.plan_id": settings.STRIPE_PLAN_PRICE_ID,
            "subscription.current_period_end": _period_end(subscription),
            "subscription.subscription_id": subscription["id"],
        }},
    )

    payment_intent = _field(_field(subscription, "latest_invoice", {}), "payment_intent", {})
    logger.info("Subscription created: user=%s subscription=%s", user["_id"], subscription["id"])
    return {
        "subscription_id": subscription["id"],
        "client_secret": _field(payment_intent, "client_secret"),
    }


async def cancel_subscription(user: dict) -> dict:
    subscription_id = (user.get("subscription") or {}).get("subscription_id")
    if not subscription_id:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No active subscription found for this user.")
    _configure()

    try:
        subscription = await run_in_threadpool(
            stripe.Subscription.modify, subscription_id, cancel_at_period_end=True,
        )
    except stripe.StripeError as exc:
        logger.error("Cancel failed for subscription=%s: %s", subscription_id, exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Failed to cancel subscription.")

    sub_status = _field(subscription, "status")
    period_end = _period_end(subscription)
    await _db.db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "subscription.status": sub_status,
            "subscription.current_period_end": period_end,
        }},
    )
    return {
        "message": "Subscription will be canceled at the end of the billing period.",
        "status": sub_status,
        "current_period_end": period_end,
    }


def get_subscription(user: dict) -> dict:
    subscription = user.get("subscription") or {}
    if not subscription.get("subscription_id"):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No subscription found for this user.")
    return serialize_doc(subscription)


# ---------- Payment methods ----------

async def get_payment_method(user: dict) -> dict:
    customer_id = _require_customer(user)
    _configure()
    try:
        customer = await run_in_threadpool(
            stripe.Customer.retrieve,
            customer_id,
            expand=["invoice_settings.default_payment_method"],
        )
    except stripe.StripeError as exc:
        logger.error("Customer lookup failed for %s: %s", customer_id, exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Payment provider error.")

    method = _field(_field(customer, "invoice_settings", {}), "default_payment_method")
    if not method:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No payment method on file.")
    return _card_summary(method)


async def update_payment_method(user: dict, payment_method_id: str) -> dict:
    customer_id = _require_customer(user)
    _configure()
    try:
        method = await run_in_threadpool(
            stripe.PaymentMethod.attach, payment_method_id, customer=customer_id,
        )
        await run_in_threadpool(
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )
    except stripe.StripeError as exc:
        logger.error("Payment method update failed for %s: %s", customer_id, exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Payment provider error.")
    return _card_summary(method)


# ---------- Webhook ----------

async def _sync_customer(customer_id: str, sub_status: str, period_end: Optional[datetime], event_type: str) -> None:
    result = await _db.db.users.update_one(
        {"subscription.customer_id": customer_id},
        {"$set": {
            "subscription.status": sub_status,
            "subscription.current_period_end": period_end,
        }},
    )
    if result.matched_count == 0:
        logger.warning("Webhook %s: no user for customer=%s", event_type, customer_id)
        return
    await log_audit(
        actor_id="STRIPE",
        target_id=customer_id,
        action="SUBSCRIPTION_SYNCED",
        metadata={"event": event_type, "status": sub_status},
    )


async def handle_webhook(payload: bytes, signature: Optional[str]) -> dict:
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Webhook secret not configured.")
    try:
        event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid webhook signature.")

    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "invoice.payment_succeeded":
        subscription_id = _field(obj, "subscription")
        if not subscription_id:
            logger.error("Invoice %s carries no subscription id", _field(obj, "id"))
        else:
            _configure()
            try:
                subscription = await run_in_threadpool(stripe.Subscription.retrieve, subscription_id)
            except stripe.StripeError as exc:
                # Acknowledge anyway; the next subscription.updated event resyncs.
                logger.error("Subscription fetch failed for %s: %s", subscription_id, exc)
            else:
                await _sync_customer(
                    subscription["customer"], subscription["status"],
                    _period_end(subscription), event_type,
                )

    elif event_type == "customer.subscription.updated":
        if _field(obj, "cancel_at_period_end"):
            logger.info("Subscription %s will cancel at period end", _field(obj, "id"))
        await _sync_customer(obj["customer"], obj["status"], _period_end(obj), event_type)

    elif event_type == "customer.subscription.deleted":
        await _sync_customer(obj["customer"], SubscriptionStatus.canceled.value, None, event_type)

    else:
        logger.debug("Unhandled Stripe event type: %s", event_type)

    return {"received": True}
