# chat2sheet/api/routers/payments.py - Razorpay checkout and webhook endpoints
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import AliasChoices, BaseModel, Field
from typing import Callable, Optional
from decimal import Decimal
import logging

from chat2sheet.api.deps.services import get_bridge_provider, get_payment_bridge
from chat2sheet.services.payment_service import (
    CheckoutDescriptor, InvalidPaymentAmount, OrderResponse, PaymentBridge,
    PaymentGatewayError, StudentNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateOrderRequest(BaseModel):
    stud_id: str = Field(validation_alias=AliasChoices("stud_id", "studid"))
    amount: Decimal


@router.post("/payments/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    bridge_provider: Callable[[], PaymentBridge] = Depends(get_bridge_provider),
):
    """Gateway events; always answered with 200 so a bad event is never retried forever"""
    raw_body = await request.body()
    try:
        outcome = await bridge_provider().handle_webhook(raw_body, x_razorpay_signature)
        return {"success": True, "status": outcome.status}
    except Exception as e:
        logger.error(f"❌ Payment webhook error: {e}", exc_info=True)
        return {"success": True, "status": "failed"}


@router.get("/payments/success")
async def payment_success(
    payment_id: str = Query(...),
    order_id: str = Query(...),
    signature: str = Query(...),
    amount: Optional[str] = Query(default=None),
    bridge: PaymentBridge = Depends(get_payment_bridge),
):
    """Checkout callback; the installment itself is recorded by the webhook"""
    if not bridge.verify_checkout(order_id, payment_id, signature):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Payment verification failed. Please contact the school office with Transaction ID: {payment_id}",
        )
    return {
        "success": True,
        "payment_id": payment_id,
        "order_id": order_id,
        "amount": amount,
        "message": "Payment successful. The receipt will be sent to you on WhatsApp shortly.",
    }


@router.get("/payments/{stud_id}", response_model=CheckoutDescriptor)
async def checkout(stud_id: str, bridge: PaymentBridge = Depends(get_payment_bridge)):
    """Checkout details for a student's full outstanding balance"""
    try:
        return await bridge.checkout(stud_id)
    except StudentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PaymentGatewayError as e:
        logger.error(f"❌ Checkout failed for {stud_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment service unavailable")


@router.post("/api/payments/create-order", response_model=OrderResponse)
async def create_order(data: CreateOrderRequest, bridge: PaymentBridge = Depends(get_payment_bridge)):
    try:
        return await bridge.create_order(data.stud_id, data.amount)
    except StudentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidPaymentAmount as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentGatewayError as e:
        logger.error(f"❌ Order creation failed for {data.stud_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create payment order")
