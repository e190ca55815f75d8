"""Tests for the payment webhook bridge and checkout orders"""

import json
from decimal import Decimal

import pytest

from chat2sheet.services.payment_service import (
    InvalidPaymentAmount, StudentNotFoundError, to_minor_units, transaction_remark,
)

from conftest import KEY_SECRET, WEBHOOK_SECRET, add_student, captured_event, sign

PARENT = "919876543210"


class TestPaymentWebhook:
    async def test_captured_payment_records_one_installment(self, ledger, mutations, bridge, whatsapp):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")
        body = captured_event("pay_ABC123", 400000, stud_id=stud_id)

        outcome = await bridge.handle_webhook(body, sign(WEBHOOK_SECRET, body))

        assert outcome.status == "processed"
        assert outcome.inst_id == "INST001"
        installments = await ledger.list_installments()
        assert len(installments) == 1
        recorded = installments[0]
        assert recorded.installment_amount == Decimal("4000")
        assert recorded.mode == "Online"
        assert recorded.recorded_by == "Razorpay"
        assert recorded.remarks == transaction_remark("pay_ABC123")

        account = await ledger.get_fee_account(stud_id)
        assert account.balance == Decimal("36000")
        assert account.status == "Partial"

        assert outcome.receipt_sent
        assert len(whatsapp.documents) == 1
        to, _, caption, filename = whatsapp.documents[0]
        assert to == PARENT
        assert filename == "receipt_INST001.pdf"
        assert "pay_ABC123" in caption
        assert whatsapp.texts == []

    async def test_invalid_signature_writes_nothing(self, ledger, mutations, bridge, whatsapp):
        stud_id = await add_student(mutations, "Rahul")
        body = captured_event("pay_BAD", 100000, stud_id=stud_id)

        outcome = await bridge.handle_webhook(body, "deadbeef")

        assert outcome.status == "invalid_signature"
        assert await ledger.list_installments() == []
        logs = await ledger.list_logs()
        assert logs[-1].action == "webhook_error"
        assert logs[-1].result == "fail"
        assert whatsapp.documents == [] and whatsapp.texts == []

    async def test_missing_signature_is_rejected(self, ledger, bridge):
        body = captured_event("pay_X", 100, stud_id="STU001")
        outcome = await bridge.handle_webhook(body, None)
        assert outcome.status == "invalid_signature"

    async def test_redelivery_is_skipped(self, ledger, mutations, bridge, whatsapp):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")
        body = captured_event("pay_DUP", 250000, stud_id=stud_id)
        signature = sign(WEBHOOK_SECRET, body)

        first = await bridge.handle_webhook(body, signature)
        second = await bridge.handle_webhook(body, signature)

        assert first.status == "processed"
        assert second.status == "duplicate"
        assert len(await ledger.list_installments()) == 1
        assert len(whatsapp.documents) == 1
        account = await ledger.get_fee_account(stud_id)
        assert account.total_paid == Decimal("2500")
        logs = await ledger.list_logs()
        assert logs[-1].action == "payment_duplicate"

    async def test_student_from_order_notes(self, ledger, mutations, bridge, gateway):
        stud_id = await add_student(mutations, "Rahul")
        gateway.orders["order_9"] = {"id": "order_9", "notes": {"studid": stud_id}}
        body = captured_event("pay_ORD", 50000, order_id="order_9")

        outcome = await bridge.handle_webhook(body, sign(WEBHOOK_SECRET, body))

        assert outcome.status == "processed"
        assert outcome.stud_id == stud_id

    async def test_other_events_are_ignored(self, ledger, bridge):
        body = json.dumps({"event": "payment.failed", "payload": {}}).encode()
        outcome = await bridge.handle_webhook(body, sign(WEBHOOK_SECRET, body))

        assert outcome.status == "ignored"
        assert await ledger.list_logs() == []

    async def test_payment_without_student_fails_and_logs(self, ledger, bridge):
        body = captured_event("pay_NOSTU", 10000)
        outcome = await bridge.handle_webhook(body, sign(WEBHOOK_SECRET, body))

        assert outcome.status == "failed"
        logs = await ledger.list_logs()
        assert logs[-1].action == "webhook_error"

    async def test_receipt_falls_back_to_text(self, mutations, bridge, whatsapp):
        stud_id = await add_student(mutations, "Rahul")
        whatsapp.fail_uploads = True
        body = captured_event("pay_TXT", 10000, stud_id=stud_id)

        outcome = await bridge.handle_webhook(body, sign(WEBHOOK_SECRET, body))

        assert outcome.receipt_sent
        assert whatsapp.documents == []
        texts = whatsapp.texts_to(PARENT)
        assert len(texts) == 1
        assert "Payment Received Successfully" in texts[0]


class TestOrders:
    async def test_create_order_within_balance(self, mutations, bridge, gateway):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")

        order = await bridge.create_order(stud_id, "1500.50")

        assert order.amount_paise == 150050
        assert order.stud_id == stud_id
        assert gateway.created[0]["notes"]["studid"] == stud_id

    async def test_amount_above_balance(self, mutations, bridge):
        stud_id = await add_student(mutations, "Rahul", total_fees="1000")
        with pytest.raises(InvalidPaymentAmount):
            await bridge.create_order(stud_id, "1001")

    async def test_amount_below_one(self, mutations, bridge):
        stud_id = await add_student(mutations, "Rahul")
        with pytest.raises(InvalidPaymentAmount):
            await bridge.create_order(stud_id, "0.5")

    async def test_unknown_student(self, bridge):
        with pytest.raises(StudentNotFoundError):
            await bridge.create_order("STU404", "100")

    async def test_checkout_for_paid_student(self, ledger, mutations, bridge, gateway):
        stud_id = await add_student(mutations, "Rahul", total_fees="0")

        descriptor = await bridge.checkout(stud_id)

        assert descriptor.fully_paid
        assert descriptor.order is None
        assert gateway.created == []

    async def test_checkout_orders_full_balance(self, mutations, bridge):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")
        descriptor = await bridge.checkout(stud_id)
        assert descriptor.order.amount_paise == 4000000

    def test_verify_checkout(self, bridge):
        signature = sign(KEY_SECRET, "order_1|pay_1")
        assert bridge.verify_checkout("order_1", "pay_1", signature)
        assert not bridge.verify_checkout("order_1", "pay_2", signature)

    def test_minor_units(self):
        assert to_minor_units(Decimal("4000")) == 400000
        assert to_minor_units(Decimal("10.005")) == 1001
