# chat2sheet/ai/confirmation.py
"""
Confirmation State Machine - holds one pending write per sender until the
sender replies YES or NO

    NONE -> AWAITING_CONFIRMATION -> (CONFIRMED | CANCELLED) -> NONE

Any other reply leaves the pending entry untouched. Entries live in process
memory only; a restart drops them.
"""

from typing import Callable, Dict, Optional
from pydantic import BaseModel
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
import uuid

from chat2sheet.core.config import settings
from chat2sheet.schemas.changeset import ChangeSet, InstallmentIntent, NewStudentIntent
from chat2sheet.schemas.ledger import format_amount, to_decimal
from chat2sheet.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


YES_REPLIES = frozenset({"yes", "y", "confirm", "ok", "proceed"})
NO_REPLIES = frozenset({"no", "n", "cancel", "stop", "abort"})


class ConfirmationState(str, Enum):
    NONE = "NONE"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


def interpret_reply(text: Optional[str]) -> Optional[bool]:
    """True for a yes-word, False for a no-word, None for anything else"""
    normalized = (text or "").strip().lower()
    if normalized in YES_REPLIES:
        return True
    if normalized in NO_REPLIES:
        return False
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingConfirmation(BaseModel):
    """The single in-flight write proposal for one sender"""
    id: str
    data: ChangeSet
    operation: str
    timestamp: datetime
    raw_message: str = ""


class ConfirmationResult(BaseModel):
    """Outcome of a reply while a confirmation is pending"""
    state: ConfirmationState
    confirmed: bool = False
    error: bool = False
    message: str
    confirmation_id: Optional[str] = None
    data: Optional[ChangeSet] = None
    operation: Optional[str] = None
    raw_message: str = ""


class ConfirmationRequest(BaseModel):
    confirmation_id: str
    message: str


# ============================================================================
# Store
# ============================================================================

class ConfirmationStore:
    """
    Process-wide mapping sender -> at most one PendingConfirmation.

    With ttl_minutes > 0 an entry older than the TTL is dropped (treated as
    cancelled) the next time it is looked up; 0 keeps entries until resolved.
    """

    def __init__(self, ttl_minutes: Optional[int] = None, clock: Callable[[], datetime] = _utcnow):
        self._store: Dict[str, PendingConfirmation] = {}
        self.ttl_minutes = settings.CONFIRMATION_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    def set(self, sender_id: str, pending: PendingConfirmation):
        """Store a pending confirmation, replacing any earlier one for the sender"""
        previous = self._store.get(sender_id)
        if previous is not None:
            logger.info(f"Replacing pending confirmation {previous.id} for {sender_id}")
        self._store[sender_id] = pending
        logger.info(f"Stored pending confirmation {pending.id} for {sender_id}")

    def get(self, sender_id: str) -> Optional[PendingConfirmation]:
        pending = self._store.get(sender_id)
        if pending is None:
            return None
        if self._expired(pending):
            del self._store[sender_id]
            logger.info(f"⌛ Pending confirmation {pending.id} for {sender_id} expired")
            return None
        return pending

    def has_pending(self, sender_id: str) -> bool:
        return self.get(sender_id) is not None

    def pop(self, sender_id: str) -> Optional[PendingConfirmation]:
        pending = self.get(sender_id)
        if pending is not None:
            del self._store[sender_id]
            logger.info(f"Cleared pending confirmation {pending.id} for {sender_id}")
        return pending

    def clear(self):
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def _expired(self, pending: PendingConfirmation) -> bool:
        if not self.ttl_minutes:
            return False
        return self.now() - pending.timestamp > timedelta(minutes=self.ttl_minutes)


# ============================================================================
# State machine
# ============================================================================

class ConfirmationManager:
    """Creates confirmation requests with a live preview and resolves replies"""

    def __init__(self, store: ConfirmationStore, ledger: LedgerStore):
        self.store = store
        self.ledger = ledger
        self.symbol = settings.CURRENCY_SYMBOL

    def state_for(self, sender_id: str) -> ConfirmationState:
        if self.store.has_pending(sender_id):
            return ConfirmationState.AWAITING_CONFIRMATION
        return ConfirmationState.NONE

    async def request(
        self,
        sender_id: str,
        change_set: ChangeSet,
        operation: str,
        raw_message: str = "",
    ) -> ConfirmationRequest:
        """NONE -> AWAITING_CONFIRMATION for a validated change set"""
        pending = PendingConfirmation(
            id=f"CONF_{uuid.uuid4().hex[:12]}",
            data=change_set,
            operation=operation,
            timestamp=self.store.now(),
            raw_message=raw_message,
        )
        self.store.set(sender_id, pending)
        preview = await self.render_preview(change_set, operation)
        return ConfirmationRequest(confirmation_id=pending.id, message=preview)

    def resolve(self, sender_id: str, text: str) -> ConfirmationResult:
        """Apply a YES / NO / other reply to the sender's pending confirmation"""
        pending = self.store.get(sender_id)
        if pending is None:
            return ConfirmationResult(
                state=ConfirmationState.NONE,
                error=True,
                message="❌ There is no pending request to confirm.",
            )

        answer = interpret_reply(text)
        if answer is None:
            return ConfirmationResult(
                state=ConfirmationState.AWAITING_CONFIRMATION,
                error=True,
                confirmation_id=pending.id,
                message="⚠️ Please reply *YES* to confirm or *NO* to cancel the pending request.",
            )

        self.store.pop(sender_id)

        if answer:
            logger.info(f"✅ Confirmation {pending.id} accepted by {sender_id}")
            return ConfirmationResult(
                state=ConfirmationState.CONFIRMED,
                confirmed=True,
                confirmation_id=pending.id,
                data=pending.data,
                operation=pending.operation,
                raw_message=pending.raw_message,
                message="✅ Confirmed! Processing your request...",
            )

        logger.info(f"❌ Confirmation {pending.id} cancelled by {sender_id}")
        return ConfirmationResult(
            state=ConfirmationState.CANCELLED,
            confirmation_id=pending.id,
            data=pending.data,
            operation=pending.operation,
            raw_message=pending.raw_message,
            message="❌ Operation cancelled. No changes were made.",
        )

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    async def render_preview(self, change_set: ChangeSet, operation: str) -> str:
        lines = [f"🔍 *Please confirm this {operation.lower()} request*", ""]

        for intent in change_set.intents():
            if isinstance(intent, NewStudentIntent):
                lines.extend(self._student_preview(intent))
            elif isinstance(intent, InstallmentIntent):
                lines.extend(await self._installment_preview(intent))
            lines.append("")

        lines.append("Reply *YES* to confirm or *NO* to cancel.")
        return "\n".join(lines)

    def _student_preview(self, intent: NewStudentIntent):
        student = intent.student
        lines = [
            "👨‍🎓 *New Student*",
            f"• Name: {student.name}",
            f"• Class: {student.class_name}",
        ]
        if student.parent_name:
            lines.append(f"• Parent: {student.parent_name}")
        if student.parent_no:
            lines.append(f"• Parent Number: {student.parent_no}")
        if student.phone_no:
            lines.append(f"• Phone: {student.phone_no}")
        if student.email:
            lines.append(f"• Email: {student.email}")
        if intent.total_fees:
            lines.append(f"• Total Fees: {self.symbol}{format_amount(intent.total_fees)}")
        return lines

    async def _installment_preview(self, intent: InstallmentIntent):
        try:
            amount = to_decimal(intent.installment_amount)
        except ValueError:
            amount = None

        try:
            student = await self.ledger.resolve_student(intent.stud_id, intent.name)
            fee = await self.ledger.get_fee_account(student.stud_id) if student else None
        except Exception as e:
            logger.warning(f"Preview lookup failed for {intent.target}: {e}")
            student, fee = None, None

        if student is None or amount is None:
            lines = [
                "💰 *Installment Payment*",
                f"• Student: {intent.target}",
                f"• Amount: {self.symbol}{intent.installment_amount}",
            ]
            if intent.mode:
                lines.append(f"• Mode: {intent.mode}")
            return lines

        lines = [
            "💰 *Installment Payment*",
            f"• Student: {student.name} ({student.stud_id})",
            f"• Class: {student.class_name}",
            f"• Amount: {self.symbol}{format_amount(amount)}",
            f"• Mode: {intent.mode or 'cash'}",
        ]
        if fee is not None:
            lines.append(f"• Current Balance: {self.symbol}{format_amount(fee.balance)}")
            lines.append(f"• New Balance: {self.symbol}{format_amount(fee.balance - amount)}")
        return lines


# Global singleton
_confirmation_store: Optional[ConfirmationStore] = None


def get_confirmation_store() -> ConfirmationStore:
    """Get or create confirmation store singleton"""
    global _confirmation_store
    if _confirmation_store is None:
        _confirmation_store = ConfirmationStore()
    return _confirmation_store
