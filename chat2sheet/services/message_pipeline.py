# chat2sheet/services/message_pipeline.py - One inbound WhatsApp message, start to finish
"""
Message pipeline

    classify -> (pending confirmation? resolve : route)

READ goes through the read parser and read service, reminders go to the
notification service, and everything else is a write: parse, validate, then
ask the sender to confirm. Writes are only applied after a YES reply.
"""

import logging
from typing import List, Optional

from chat2sheet.ai.classifier import Classification, IntentClassifier, Operation
from chat2sheet.ai.confirmation import ConfirmationManager
from chat2sheet.ai.parser import StructuredParser
from chat2sheet.ai.read_parser import ReadRequestParser
from chat2sheet.core.config import settings
from chat2sheet.core.security import mask_sensitive_data
from chat2sheet.schemas.changeset import ChangeSet, audit_stud_id
from chat2sheet.schemas.ledger import RESULT_FAIL, RESULT_PENDING, RESULT_SUCCESS
from chat2sheet.services.ledger_service import LedgerMutationService
from chat2sheet.services.ledger_store import LedgerStore
from chat2sheet.services.notification_service import NotificationService
from chat2sheet.services.read_service import ReadService, format_read_response
from chat2sheet.services.validator import validate_change_set
from chat2sheet.services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)

GENERIC_ERROR = "❌ Sorry, I encountered an error processing your message. Please try again."
NOT_UNDERSTOOD = (
    "❌ Sorry, I couldn't understand that request.\n\n"
    "Please include a student ID or name and an amount, "
    'e.g. "STU001 paid 4000" or "Add student Rahul class 10 fees 40000".'
)
MISSING_REMINDER_ID = "❌ Please specify a student ID for reminder (e.g., remind STU123)"


def actor_for(sender: str) -> str:
    return f"whatsapp_{sender}"


class MessagePipeline:
    def __init__(
        self,
        ledger: LedgerStore,
        classifier: IntentClassifier,
        parser: StructuredParser,
        read_parser: ReadRequestParser,
        read_service: ReadService,
        confirmations: ConfirmationManager,
        mutations: LedgerMutationService,
        notifications: NotificationService,
        whatsapp: WhatsAppService,
    ):
        self.ledger = ledger
        self.classifier = classifier
        self.parser = parser
        self.read_parser = read_parser
        self.read_service = read_service
        self.confirmations = confirmations
        self.mutations = mutations
        self.notifications = notifications
        self.whatsapp = whatsapp

    async def handle_message(self, sender: str, text: str) -> List[str]:
        """Process one message and return the replies sent back to the sender"""
        replies: List[str] = []
        change_set: Optional[ChangeSet] = None
        logger.info(f"📩 Message from {mask_sensitive_data(sender)}: {text!r}")

        try:
            classification = await self.classifier.classify(text, sender)
            logger.info(f"🎯 Classification: {classification.operation.value}"
                        + (f" (Student: {classification.student_id})" if classification.student_id else ""))

            if classification.is_confirmation:
                await self._handle_confirmation(sender, text, replies)
            elif classification.operation == Operation.READ:
                await self._handle_read(sender, text, replies)
            elif classification.operation in (Operation.REMIND_ALL, Operation.REMIND_SPECIFIC):
                await self._handle_reminder(sender, classification, replies)
            else:
                change_set = await self.parser.parse(text)
                await self._handle_write(sender, text, classification.operation, change_set, replies)

        except Exception as e:
            logger.error(f"❌ Error handling message: {e}", exc_info=True)
            try:
                await self.ledger.append_log(
                    action="webhook_error",
                    result=RESULT_FAIL,
                    raw_message=text,
                    parsed_json=change_set.snapshot() if change_set is not None else "",
                    error_msg=str(e),
                    performed_by="system",
                )
            except Exception as log_error:
                logger.error(f"❌ Failed to log error: {log_error}")
            await self._reply_safely(sender, GENERIC_ERROR, replies)

        return replies

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    async def _handle_confirmation(self, sender: str, text: str, replies: List[str]):
        result = self.confirmations.resolve(sender, text)
        # The pending entry is already popped here
        await self._reply_safely(sender, result.message, replies)
        if result.error:
            return

        actor = actor_for(sender)
        if not result.confirmed:
            await self.ledger.append_log(
                action="confirmation_cancelled",
                result=RESULT_SUCCESS,
                stud_id=result.data.audit_stud_id() if result.data else "",
                raw_message=result.raw_message or text,
                parsed_json=result.data.snapshot() if result.data else "",
                performed_by=actor,
            )
            return

        mutation = await self.mutations.apply_change_set(result.data, actor=actor, raw_message=result.raw_message)
        await self._reply_safely(sender, mutation.to_message(settings.CURRENCY_SYMBOL), replies)

        for row in mutation.recorded_installments:
            await self.notifications.send_payment_receipt(row.stud_id, row.installment, row.fee_account)

    async def _handle_read(self, sender: str, text: str, replies: List[str]):
        request = await self.read_parser.parse(text)
        result = await self.read_service.process(request)
        await self._reply(sender, format_read_response(result), replies)

    async def _handle_reminder(self, sender: str, classification: Classification, replies: List[str]):
        if classification.operation == Operation.REMIND_ALL:
            logger.info("📢 Processing REMIND_ALL request")
            summary = await self.notifications.send_reminder_to_all()
            await self._reply(sender, summary.to_message(), replies)
            return

        if not classification.student_id:
            await self._reply(sender, MISSING_REMINDER_ID, replies)
            return

        logger.info(f"📢 Processing REMIND_SPECIFIC request for: {classification.student_id}")
        message = await self.notifications.send_reminder_to_specific(classification.student_id)
        await self._reply(sender, message, replies)

    async def _handle_write(
        self,
        sender: str,
        text: str,
        operation: Operation,
        change_set: ChangeSet,
        replies: List[str],
    ):
        actor = actor_for(sender)

        if change_set.is_empty():
            logs = change_set.Logs or ChangeSet.parse_failure(text, "No students or installments recognised").Logs
            for seed in logs:
                await self.ledger.append_log(
                    action=seed.action or "parse_error",
                    result=seed.result or RESULT_FAIL,
                    stud_id=audit_stud_id(seed.stud_id),
                    raw_message=seed.raw_message or text,
                    parsed_json=seed.parsed_json or change_set.snapshot(),
                    error_msg=seed.error_msg,
                    performed_by=seed.performed_by or actor,
                )
            await self._reply(sender, NOT_UNDERSTOOD, replies)
            return

        validation = validate_change_set(change_set)
        if not validation.is_valid:
            await self._reply(sender, validation.error_message, replies)
            await self.ledger.append_log(
                action="validation_failed",
                result=RESULT_FAIL,
                stud_id=change_set.audit_stud_id(),
                raw_message=text,
                parsed_json=change_set.snapshot(),
                error_msg=validation.error_message,
                performed_by=actor,
            )
            return

        await self.ledger.append_log(
            action="confirmation_requested",
            result=RESULT_PENDING,
            stud_id=change_set.audit_stud_id(),
            raw_message=text,
            parsed_json=change_set.snapshot(),
            performed_by=actor,
        )
        request = await self.confirmations.request(sender, change_set, operation.value, raw_message=text)
        await self._reply(sender, request.message, replies)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _reply(self, sender: str, message: str, replies: List[str]):
        replies.append(message)
        await self.whatsapp.send_text(sender, message)

    async def _reply_safely(self, sender: str, message: str, replies: List[str]):
        try:
            await self._reply(sender, message, replies)
        except Exception as e:
            logger.error(f"❌ Failed to send reply to {sender}: {e}")
