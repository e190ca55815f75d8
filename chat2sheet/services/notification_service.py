# chat2sheet/services/notification_service.py - Fee reminders and payment receipts
"""
Notification service

Reminders go to the parent number of each student who still owes fees.
Receipts are best effort: a rendered PDF when possible, the caption alone
otherwise, and a notification_failed log row when nothing could be sent.
Nothing here raises into the caller.
"""

import logging
import re
from typing import List, Optional
from pydantic import BaseModel, Field

from chat2sheet.core.config import settings
from chat2sheet.core.security import mask_sensitive_data
from chat2sheet.schemas.ledger import (
    RESULT_FAIL, FeeAccountRecord, InstallmentRecord, StudentRecord,
)
from chat2sheet.services.invoice_service import InvoiceService
from chat2sheet.services.ledger_store import LedgerStore
from chat2sheet.services.templates import MessageTemplates
from chat2sheet.services.whatsapp_service import WhatsAppError, WhatsAppService

logger = logging.getLogger(__name__)

MAX_ERROR_LINES = 5


def format_phone(number: Optional[str], country_code: Optional[str] = None) -> Optional[str]:
    """Digits only, prefixed with the default country code when it is missing"""
    country_code = country_code or settings.DEFAULT_COUNTRY_CODE
    digits = re.sub(r"\D", "", str(number or ""))
    if not digits:
        return None
    if digits.startswith(country_code) and len(digits) > 10:
        return digits
    return f"{country_code}{digits.lstrip('0')}"


class ReminderSummary(BaseModel):
    total: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)

    def to_message(self) -> str:
        if not self.total:
            return "❌ No students found"

        message = (
            "📢 Reminder process completed\n\n"
            "📊 Summary:\n"
            f"• Total Students: {self.total}\n"
            f"• Successful: {self.sent}\n"
            f"• Failed: {self.failed}\n"
            f"• Skipped (fully paid): {self.skipped}"
        )
        if self.errors:
            lines = "\n".join(f"• {detail}" for detail in self.errors[:MAX_ERROR_LINES])
            message += f"\n\n❌ Errors:\n{lines}"
            if len(self.errors) > MAX_ERROR_LINES:
                message += f"\n• ... and {len(self.errors) - MAX_ERROR_LINES} more errors"
        return message


class ReceiptResult(BaseModel):
    success: bool
    delivered_as: Optional[str] = None
    error: Optional[str] = None


class NotificationService:
    def __init__(self, ledger: LedgerStore, whatsapp: WhatsAppService, invoices: Optional[InvoiceService] = None):
        self.ledger = ledger
        self.whatsapp = whatsapp
        self.invoices = invoices or InvoiceService()

    # ========================================================================
    # Reminders
    # ========================================================================

    async def send_reminder_to_all(self) -> ReminderSummary:
        logger.info("📢 Starting reminder to all students...")
        students = await self.ledger.list_students()
        accounts = {account.stud_id.upper(): account for account in await self.ledger.list_fee_accounts()}
        summary = ReminderSummary(total=len(students))

        for student in students:
            account = accounts.get(student.stud_id.upper())
            if account is not None and account.balance <= 0:
                summary.skipped += 1
                continue

            number = format_phone(student.parent_no)
            if not number:
                summary.failed += 1
                summary.errors.append(f"{student.name}: No parent number available")
                continue

            try:
                await self.whatsapp.send_text(number, MessageTemplates.fee_reminder(student, account))
                summary.sent += 1
                logger.info(f"✅ Reminder sent to {student.name}'s parent")
            except WhatsAppError as e:
                summary.failed += 1
                if e.not_allowed_recipient:
                    summary.errors.append(f"{student.name}: Phone not in allowed list")
                else:
                    summary.errors.append(f"{student.name}: {e}")
                logger.warning(f"❌ Failed to send reminder to {student.name}: {e}")

        logger.info(f"📊 Reminders: {summary.sent} sent, {summary.failed} failed, {summary.skipped} skipped")
        return summary

    async def send_reminder_to_specific(self, stud_id: str) -> str:
        """Remind one guardian; returns the reply for the staff member who asked"""
        student = await self.ledger.find_student_by_id(stud_id)
        if student is None:
            return f"❌ Student {stud_id} not found"

        number = format_phone(student.parent_no)
        if not number:
            return f"❌ No parent number available for {student.name} ({student.stud_id})"

        account = await self.ledger.get_fee_account(student.stud_id)
        if account is not None and account.balance <= 0:
            return f"✅ {student.name} ({student.stud_id}) has no outstanding fees. No reminder sent."

        try:
            await self.whatsapp.send_text(number, MessageTemplates.fee_reminder(student, account))
        except WhatsAppError as e:
            logger.warning(f"❌ Failed to send reminder to {student.name}: {e}")
            if e.not_allowed_recipient:
                return (
                    f"❌ Cannot send reminder to {student.name}\n\n"
                    f"Reason: Parent's phone number ({number}) is not in WhatsApp Business allowed list.\n\n"
                    "💡 To fix this:\n"
                    f"1. Add {number} to your WhatsApp Business allowed recipients\n"
                    "2. Or use a verified phone number"
                )
            return f"❌ Failed to send reminder to {student.name}\n\nError: {e}"

        logger.info(f"✅ Reminder sent to {student.name}'s parent")
        return (
            "✅ Reminder sent successfully\n\n"
            f"👨‍🎓 Student: {student.name}\n"
            f"🆔 ID: {student.stud_id}\n"
            f"📚 Class: {student.class_name}\n"
            f"📞 Parent Number: {number}"
        )

    # ========================================================================
    # Receipts
    # ========================================================================

    async def send_payment_receipt(
        self,
        stud_id: str,
        installment: InstallmentRecord,
        account: Optional[FeeAccountRecord] = None,
        transaction_id: Optional[str] = None,
    ) -> ReceiptResult:
        try:
            result = await self._deliver_receipt(stud_id, installment, account, transaction_id)
        except Exception as e:
            logger.error(f"❌ Receipt for {installment.inst_id} failed: {e}", exc_info=True)
            result = ReceiptResult(success=False, error=str(e))

        if not result.success:
            await self._log_failure(stud_id, installment, result.error or "")
        return result

    async def _deliver_receipt(
        self,
        stud_id: str,
        installment: InstallmentRecord,
        account: Optional[FeeAccountRecord],
        transaction_id: Optional[str],
    ) -> ReceiptResult:
        student = await self.ledger.find_student_by_id(stud_id)
        if student is None:
            return ReceiptResult(success=False, error=f"Student {stud_id} not found")

        number = format_phone(student.parent_no or student.phone_no)
        if not number:
            return ReceiptResult(success=False, error=f"No guardian number for {student.stud_id}")

        if account is None:
            account = await self.ledger.get_fee_account(student.stud_id)
        caption = MessageTemplates.receipt_caption(student, installment, account, transaction_id)

        if await self._send_pdf(number, student, installment, account, caption):
            return ReceiptResult(success=True, delivered_as="document")

        await self.whatsapp.send_text(number, caption)
        logger.info(f"📤 Receipt caption sent as text to {mask_sensitive_data(number)}")
        return ReceiptResult(success=True, delivered_as="text")

    async def _send_pdf(
        self,
        number: str,
        student: StudentRecord,
        installment: InstallmentRecord,
        account: Optional[FeeAccountRecord],
        caption: str,
    ) -> bool:
        file_path = None
        try:
            file_path = await self.invoices.generate_receipt(student, installment, account)
            media_id = await self.whatsapp.upload_media(file_path)
            await self.whatsapp.send_document(
                number,
                media_id,
                caption=caption,
                filename=f"receipt_{installment.inst_id}.pdf",
            )
            return True
        except Exception as e:
            logger.warning(f"⚠️ Receipt PDF not delivered, falling back to text: {e}")
            return False
        finally:
            self.invoices.cleanup(file_path)

    async def _log_failure(self, stud_id: str, installment: InstallmentRecord, error: str):
        try:
            await self.ledger.append_log(
                action="notification_failed",
                result=RESULT_FAIL,
                stud_id=stud_id,
                parsed_json=installment.model_dump_json(by_alias=True),
                error_msg=error,
                performed_by="system",
            )
        except Exception as e:
            logger.error(f"❌ Failed to log notification failure: {e}")
