# chat2sheet/services/payment_service.py - Razorpay orders and the payment webhook bridge
"""
Payment Bridge

A verified ``payment.captured`` webhook becomes a one-installment ChangeSet
that goes straight to the mutation service; there is no human confirmation
step. The gateway retries webhooks, so a payment id that is already recorded
in an installment's remarks, or is being processed right now, is skipped and
logged as ``payment_duplicate``.
"""

import httpx
import json
import logging
import re
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Set
from pydantic import BaseModel

from chat2sheet.core.config import settings
from chat2sheet.core.security import verify_checkout_signature, verify_webhook_signature
from chat2sheet.schemas.changeset import ChangeSet
from chat2sheet.schemas.ledger import (
    RESULT_FAIL, format_amount, to_decimal, today_iso,
)
from chat2sheet.services.ledger_service import LedgerMutationService
from chat2sheet.services.ledger_store import LedgerStore
from chat2sheet.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

CAPTURED_EVENT = "payment.captured"
NOTE_KEYS = ("studid", "stud_id", "student_id")


class PaymentGatewayError(Exception):
    """Raised when the gateway API rejects a request or cannot be reached"""
    pass


class PaymentError(Exception):
    pass


class StudentNotFoundError(PaymentError):
    pass


class InvalidPaymentAmount(PaymentError):
    pass


def transaction_remark(payment_id: str) -> str:
    return f"Transaction ID: {payment_id}"


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ============================================================================
# Gateway client
# ============================================================================

class RazorpayClient:
    """Minimal Razorpay Orders API client"""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_API_URL).rstrip("/")
        self.timeout = timeout
        self._client = client

    async def create_order(self, amount_paise: int, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        payload = {
            "amount": amount_paise,
            "currency": settings.CURRENCY,
            "receipt": receipt,
            "notes": notes,
        }
        order = await self._request("POST", "/orders", json=payload)
        logger.info(f"✅ Razorpay order created: {order.get('id')} for {amount_paise} paise")
        return order

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Razorpay credentials are not configured")

        url = f"{self.base_url}{path}"
        auth = (self.key_id, self.key_secret)
        try:
            if self._client is not None:
                response = await self._client.request(method, url, json=json, auth=auth, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(method, url, json=json, auth=auth, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Razorpay API error {e.response.status_code}: {e.response.text}")
            raise PaymentGatewayError(f"Razorpay API error: {e.response.status_code}") from e

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Razorpay request failed: {e}")
            raise PaymentGatewayError(f"Razorpay request failed: {e}") from e


# ============================================================================
# Results
# ============================================================================

class WebhookOutcome(BaseModel):
    status: str
    message: str = ""
    payment_id: Optional[str] = None
    stud_id: Optional[str] = None
    inst_id: Optional[str] = None
    receipt_sent: bool = False


class OrderResponse(BaseModel):
    order_id: str
    amount: Decimal
    amount_paise: int
    currency: str
    stud_id: str
    student_name: str
    razorpay_key: Optional[str] = None


class CheckoutDescriptor(BaseModel):
    stud_id: str
    student_name: str
    class_name: str
    school_name: str
    outstanding: Decimal
    fully_paid: bool = False
    order: Optional[OrderResponse] = None


# ============================================================================
# Bridge
# ============================================================================

class PaymentBridge:
    def __init__(
        self,
        ledger: LedgerStore,
        mutations: LedgerMutationService,
        notifications: NotificationService,
        gateway: RazorpayClient,
        webhook_secret: Optional[str] = None,
        key_secret: Optional[str] = None,
    ):
        self.ledger = ledger
        self.mutations = mutations
        self.notifications = notifications
        self.gateway = gateway
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self._in_flight: Set[str] = set()

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """Verify and process one gateway event; never raises"""
        if not verify_webhook_signature(self.webhook_secret, raw_body, signature):
            logger.error("❌ Invalid webhook signature")
            await self._log_webhook_error("Invalid webhook signature", raw_body)
            return WebhookOutcome(status="invalid_signature", message="Invalid signature")

        try:
            event = json.loads(raw_body)
            name = event.get("event")
            logger.info(f"📨 Webhook received: {name}")
            if name != CAPTURED_EVENT:
                return WebhookOutcome(status="ignored", message=f"Event {name} ignored")

            payment = event["payload"]["payment"]["entity"]
            return await self.record_captured_payment(payment)

        except Exception as e:
            logger.error(f"❌ Webhook error: {e}", exc_info=True)
            await self._log_webhook_error(str(e), raw_body)
            return WebhookOutcome(status="failed", message=str(e))

    async def record_captured_payment(self, payment: Dict[str, Any]) -> WebhookOutcome:
        payment_id = str(payment.get("id") or "")
        if not payment_id:
            raise PaymentError("Payment entity has no id")

        stud_id = await self._student_for_payment(payment)
        if not stud_id:
            raise PaymentError(f"No student id in notes for payment {payment_id}")

        amount = Decimal(int(payment.get("amount") or 0)) / Decimal(100)

        if payment_id in self._in_flight:
            return await self._skip_duplicate(payment_id, stud_id)

        self._in_flight.add(payment_id)
        try:
            if await self.already_recorded(payment_id):
                return await self._skip_duplicate(payment_id, stud_id)

            change_set = ChangeSet.for_installment(
                stud_id=stud_id,
                installment_amount=format_amount(amount),
                date=today_iso(),
                mode="Online",
                recorded_by="Razorpay",
                remarks=transaction_remark(payment_id),
            )
            result = await self.mutations.apply_change_set(
                change_set,
                actor="Razorpay",
                raw_message=f"{CAPTURED_EVENT} {payment_id}",
            )
        finally:
            self._in_flight.discard(payment_id)

        recorded = result.recorded_installments
        if not recorded:
            errors = "; ".join(row.error for row in result.installments if row.error)
            logger.error(f"❌ Payment {payment_id} not recorded: {errors}")
            return WebhookOutcome(status="failed", payment_id=payment_id, stud_id=stud_id, message=errors)

        row = recorded[0]
        receipt = await self.notifications.send_payment_receipt(
            row.stud_id,
            row.installment,
            row.fee_account,
            transaction_id=payment_id,
        )
        logger.info(f"✅ Payment {payment_id} recorded as {row.record_id}")
        return WebhookOutcome(
            status="processed",
            payment_id=payment_id,
            stud_id=row.stud_id,
            inst_id=row.record_id,
            receipt_sent=receipt.success,
            message="Payment processed successfully",
        )

    async def already_recorded(self, payment_id: str) -> bool:
        pattern = re.compile(rf"{re.escape(transaction_remark(payment_id))}\b")
        return any(pattern.search(i.remarks) for i in await self.ledger.list_installments())

    async def _skip_duplicate(self, payment_id: str, stud_id: str) -> WebhookOutcome:
        logger.warning(f"⚠️ Duplicate payment {payment_id} skipped")
        await self.ledger.append_log(
            action="payment_duplicate",
            result=RESULT_FAIL,
            stud_id=stud_id,
            raw_message=f"{CAPTURED_EVENT} {payment_id}",
            error_msg=f"Payment {payment_id} already recorded",
            performed_by="Razorpay",
        )
        return WebhookOutcome(status="duplicate", payment_id=payment_id, stud_id=stud_id,
                              message="Payment already recorded")

    async def _student_for_payment(self, payment: Dict[str, Any]) -> str:
        order_id = payment.get("order_id")
        if order_id:
            try:
                order = await self.gateway.fetch_order(order_id)
                stud_id = _student_from_notes(order.get("notes"))
                if stud_id:
                    return stud_id
            except PaymentGatewayError as e:
                logger.warning(f"Order {order_id} lookup failed, using payment notes: {e}")
        return _student_from_notes(payment.get("notes"))

    async def _log_webhook_error(self, error: str, raw_body: bytes):
        try:
            await self.ledger.append_log(
                action="webhook_error",
                result=RESULT_FAIL,
                raw_message=raw_body.decode("utf-8", errors="replace")[:2000],
                error_msg=error,
                performed_by="Razorpay",
            )
        except Exception as e:
            logger.error(f"❌ Failed to log webhook error: {e}")

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def outstanding_for(self, stud_id: str):
        student = await self.ledger.find_student_by_id(stud_id)
        if student is None:
            raise StudentNotFoundError(f"Student {stud_id} not found")
        account = await self.ledger.get_fee_account(student.stud_id)
        balance = account.balance if account is not None else Decimal("0")
        return student, balance

    async def create_order(self, stud_id: str, amount: Any) -> OrderResponse:
        """Order for a parent-chosen amount between 1 and the outstanding balance"""
        student, balance = await self.outstanding_for(stud_id)
        try:
            amount = to_decimal(amount)
        except ValueError:
            raise InvalidPaymentAmount("Invalid payment amount")

        if amount < 1:
            raise InvalidPaymentAmount("Invalid payment amount")
        if amount > balance:
            raise InvalidPaymentAmount(
                f"Payment amount cannot exceed outstanding balance of {settings.CURRENCY_SYMBOL}{format_amount(balance)}"
            )

        amount_paise = to_minor_units(amount)
        order = await self.gateway.create_order(
            amount_paise,
            receipt=f"fee_{student.stud_id}_{int(time.time() * 1000)}",
            notes={
                "studid": student.stud_id,
                "student_name": student.name,
                "class": student.class_name,
                "payment_amount": format_amount(amount),
                "outstanding_balance": format_amount(balance),
            },
        )
        return OrderResponse(
            order_id=order["id"],
            amount=amount,
            amount_paise=amount_paise,
            currency=order.get("currency") or settings.CURRENCY,
            stud_id=student.stud_id,
            student_name=student.name,
            razorpay_key=self.gateway.key_id,
        )

    async def checkout(self, stud_id: str) -> CheckoutDescriptor:
        """Checkout details for the full outstanding balance"""
        student, balance = await self.outstanding_for(stud_id)
        descriptor = CheckoutDescriptor(
            stud_id=student.stud_id,
            student_name=student.name,
            class_name=student.class_name,
            school_name=settings.SCHOOL_NAME,
            outstanding=max(balance, Decimal("0")),
        )
        if balance <= 0:
            descriptor.fully_paid = True
            return descriptor

        descriptor.order = await self.create_order(student.stud_id, balance)
        return descriptor

    def verify_checkout(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        valid = verify_checkout_signature(self.key_secret, order_id, payment_id, signature)
        if valid:
            logger.info(f"✅ Payment verification successful: {payment_id}")
        else:
            logger.error(f"❌ Payment verification failed: {payment_id}")
        return valid


def _student_from_notes(notes: Any) -> str:
    if not isinstance(notes, dict):
        return ""
    for key in NOTE_KEYS:
        value = notes.get(key)
        if value:
            return str(value).strip().upper()
    return ""
