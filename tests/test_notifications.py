"""Tests for reminders, receipts and phone number formatting"""

from chat2sheet.schemas.ledger import InstallmentRecord
from chat2sheet.services.notification_service import ReminderSummary, format_phone
from chat2sheet.services.whatsapp_service import NOT_ALLOWED_RECIPIENT, WhatsAppError

from conftest import add_student

PARENT = "919876543210"


class TestFormatPhone:
    def test_adds_country_code(self):
        assert format_phone("98765 43210", "91") == "919876543210"

    def test_keeps_existing_country_code(self):
        assert format_phone("+91 98765-43210", "91") == "919876543210"

    def test_strips_trunk_zero(self):
        assert format_phone("09876543210", "91") == "919876543210"

    def test_empty(self):
        assert format_phone("", "91") is None
        assert format_phone(None, "91") is None


class TestReminderSummary:
    def test_no_students(self):
        assert ReminderSummary().to_message() == "❌ No students found"

    def test_error_lines_are_capped(self):
        summary = ReminderSummary(total=8, failed=8, errors=[f"S{i}: failed" for i in range(8)])
        message = summary.to_message()
        assert "• S4: failed" in message
        assert "• S5: failed" not in message
        assert "• ... and 3 more errors" in message


class TestReminders:
    async def test_remind_all_counts(self, mutations, notifications, whatsapp):
        await add_student(mutations, "Rahul", total_fees="1000")
        await add_student(mutations, "Asha", total_fees="0")
        await add_student(mutations, "Ravi", parent_no="")

        summary = await notifications.send_reminder_to_all()

        assert summary.total == 3
        assert summary.sent == 1
        assert summary.skipped == 1
        assert summary.failed == 1
        assert summary.errors == ["Ravi: No parent number available"]
        reminder = whatsapp.texts_to(PARENT)[0]
        assert "Outstanding Amount:* ₹1000" in reminder
        assert "/payments/STU001" in reminder

    async def test_not_allowed_recipient(self, mutations, notifications, whatsapp):
        await add_student(mutations, "Rahul")
        whatsapp.fail_for[PARENT] = WhatsAppError("not allowed", code=NOT_ALLOWED_RECIPIENT, status=400)

        summary = await notifications.send_reminder_to_all()

        assert summary.failed == 1
        assert summary.errors == ["Rahul: Phone not in allowed list"]

    async def test_specific_student_messages(self, mutations, notifications, whatsapp):
        paid = await add_student(mutations, "Asha", total_fees="0")
        assert "not found" in await notifications.send_reminder_to_specific("STU404")
        assert "no outstanding fees" in await notifications.send_reminder_to_specific(paid)

        owing = await add_student(mutations, "Rahul")
        whatsapp.fail_for[PARENT] = WhatsAppError("not allowed", code=NOT_ALLOWED_RECIPIENT)
        message = await notifications.send_reminder_to_specific(owing)
        assert "allowed list" in message


class TestReceipts:
    async def test_receipt_failure_is_logged(self, ledger, mutations, notifications, whatsapp):
        stud_id = await add_student(mutations, "Rahul")
        whatsapp.fail_uploads = True
        whatsapp.fail_for[PARENT] = WhatsAppError("down", status=503)
        installment = InstallmentRecord(inst_id="INST009", stud_id=stud_id, name="Rahul", installment_amount="100")

        result = await notifications.send_payment_receipt(stud_id, installment)

        assert not result.success
        logs = await ledger.list_logs()
        assert logs[-1].action == "notification_failed"
        assert logs[-1].stud_id == stud_id

    async def test_pdf_is_cleaned_up(self, mutations, notifications, invoices):
        stud_id = await add_student(mutations, "Rahul")
        installment = InstallmentRecord(inst_id="INST001", stud_id=stud_id, name="Rahul", installment_amount="100")

        result = await notifications.send_payment_receipt(stud_id, installment)

        assert result.delivered_as == "document"
        assert invoices.cleaned == invoices.generated
