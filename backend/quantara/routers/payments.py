"""Subscription billing endpoints and the Stripe webhook."""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from quantara.services import payment_service
from quantara.services.auth_service import get_current_user

router = APIRouter(prefix="/api/stripe", tags=["payments"])


class PaymentMethodBody(BaseModel):
    payment_method_id: str = Field(min_length=1)


@router.post("/create-subscription", status_code=201)
async def create_subscription(body: PaymentMethodBody, user=Depends(get_current_user)):
    """Attach the card, create the subscription, hand back the client secret."""
    return await payment_service.create_subscription(user, body.payment_method_id)


@router.post("/cancel-subscription")
async def cancel_subscription(user=Depends(get_current_user)):
    return await payment_service.cancel_subscription(user)


@router.get("/get-subscription")
async def get_subscription(user=Depends(get_current_user)):
    return {"subscription": payment_service.get_subscription(user)}


@router.get("/payment-method")
async def get_payment_method(user=Depends(get_current_user)):
    return await payment_service.get_payment_method(user)


@router.post("/update-payment-method")
async def update_payment_method(body: PaymentMethodBody, user=Depends(get_current_user)):
    return await payment_service.update_payment_method(user, body.payment_method_id)


@router.post("/webhook")
async def stripe_webhook(request: Request):
    """Stripe event receiver; authenticated by the signature header only."""
    payload = await request.body()
    return await payment_service.handle_webhook(payload, request.headers.get("stripe-signature"))
