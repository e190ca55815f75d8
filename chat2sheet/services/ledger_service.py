# chat2sheet/services/ledger_service.py - The only place ledger state is mutated
"""
Ledger Mutation Service

Applies a confirmed (or webhook-trusted) ChangeSet in a fixed order:
students, then installments, then the change set's own log rows. Every
installment write is followed by a full recompute of the student's fee
account from its installment rows. Each row fails on its own; siblings still
run and every outcome gets an audit log row.
"""

from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
import logging

from chat2sheet.core.config import settings
from chat2sheet.schemas.changeset import ChangeSet, InstallmentIntent, NewStudentIntent, audit_stud_id
from chat2sheet.schemas.ledger import (
    FEES, INSTALLMENTS, STUDENTS,
    RESULT_FAIL, RESULT_PARTIAL, RESULT_SUCCESS, STATUS_UNPAID,
    FeeAccountRecord, InstallmentRecord, StudentRecord,
    fee_status, format_amount, parse_date_flexible, to_decimal, today_iso, utc_timestamp,
)
from chat2sheet.services.ledger_store import LedgerStore, LedgerStoreError

logger = logging.getLogger(__name__)


class RowOutcome(BaseModel):
    """Result of one student, installment or log write"""
    success: bool
    kind: str
    record_id: Optional[str] = None
    stud_id: str = ""
    name: str = ""
    amount: Optional[Decimal] = None
    error: Optional[str] = None
    installment: Optional[InstallmentRecord] = None
    fee_account: Optional[FeeAccountRecord] = None


class MutationResult(BaseModel):
    success: bool = True
    students: List[RowOutcome] = Field(default_factory=list)
    installments: List[RowOutcome] = Field(default_factory=list)
    logs: List[RowOutcome] = Field(default_factory=list)

    @property
    def recorded_installments(self) -> List[RowOutcome]:
        """Installments that were written, including ones whose recompute failed"""
        return [row for row in self.installments if row.installment is not None]

    @property
    def batch_result(self) -> str:
        rows = self.students + self.installments
        if not rows:
            return RESULT_SUCCESS
        succeeded = sum(1 for row in rows if row.success)
        if succeeded == len(rows):
            return RESULT_SUCCESS
        return RESULT_PARTIAL if succeeded else RESULT_FAIL

    def to_message(self, symbol: str = "₹") -> str:
        """WhatsApp summary of the batch"""
        added_students = [row for row in self.students if row.success]
        added_installments = [row for row in self.installments if row.success]
        failures = [row for row in self.students + self.installments if not row.success]

        if not added_students and not added_installments:
            lines = ["❌ *Error processing your request*", ""]
        elif failures:
            lines = ["⚠️ *Request partially processed*", ""]
        else:
            lines = ["✅ *Data processed successfully!*", ""]

        if added_students:
            lines.append("👨‍🎓 *Students Added:*")
            lines.extend(f"• {row.name} ({row.stud_id})" for row in added_students)
            lines.append("")

        if added_installments:
            lines.append("💰 *Installments Added:*")
            for row in added_installments:
                line = f"• {symbol}{format_amount(row.amount)} for {row.name} ({row.stud_id})"
                if row.fee_account is not None:
                    line += f" - Balance: {symbol}{format_amount(row.fee_account.balance)}"
                lines.append(line)
            lines.append("")

        if failures:
            lines.append("❌ *Errors:*")
            lines.extend(f"• {row.error}" for row in failures)
            lines.append("")

        if added_students or added_installments:
            lines.append("📊 The ledger has been updated.")
        return "\n".join(lines).strip()


class LedgerMutationService:
    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    async def apply_change_set(self, change_set: ChangeSet, actor: str, raw_message: str = "") -> MutationResult:
        """Apply every intent of a change set; success only if every row and log succeeded"""
        result = MutationResult()
        snapshot = change_set.snapshot()
        created: Dict[str, str] = {}

        logger.info(f"📊 Applying change set for {actor}: {len(change_set.Students)} student(s), "
                    f"{len(change_set.Installments)} installment(s)")

        for intent in change_set.intents():
            if isinstance(intent, NewStudentIntent):
                outcome = await self._create_student(intent, actor)
                if outcome.success:
                    created[outcome.name.strip().lower()] = outcome.stud_id
                result.students.append(outcome)
                action = "add_student"
            else:
                outcome = await self._record_installment(intent, actor, created)
                result.installments.append(outcome)
                action = "add_installment"

            if outcome.success:
                row_result = RESULT_SUCCESS
            elif outcome.installment is not None:
                row_result = RESULT_PARTIAL
            else:
                row_result = RESULT_FAIL
            await self._log(result, action, row_result, outcome.stud_id, raw_message, snapshot, outcome.error or "", actor)

        await self._append_seed_logs(change_set, result, actor, raw_message, snapshot)

        result.success = all(row.success for row in result.students + result.installments + result.logs)
        if result.success:
            logger.info("✅ Change set applied")
        else:
            logger.warning(f"⚠️ Change set applied with failures ({result.batch_result})")
        return result

    async def recompute_fee_account(self, stud_id: str) -> FeeAccountRecord:
        """
        Rebuild total_paid, balance and status from the student's installments.

        Idempotent: with no new installments, repeated calls write the same values.
        """
        account = await self.ledger.get_fee_account(stud_id)
        if account is None:
            raise LedgerStoreError(f"No fee account for {stud_id}")

        installments = await self.ledger.installments_for_student(account.stud_id)
        total_paid = sum((i.installment_amount for i in installments), Decimal("0"))
        balance = account.total_fees - total_paid
        status = fee_status(total_paid, balance)

        updated = await self.ledger.update_fee_totals(account.stud_id, total_paid, balance, status)
        logger.info(f"🧮 Recomputed {account.stud_id}: paid {total_paid}, balance {balance}, {status}")
        return updated

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def _create_student(self, intent: NewStudentIntent, actor: str) -> RowOutcome:
        seed = intent.student
        name = seed.name.strip()
        try:
            total_fees = to_decimal(intent.total_fees)
            if total_fees < 0:
                raise ValueError("Total fees cannot be negative")

            stud_id = await self.ledger.allocate_id(STUDENTS)
            student = StudentRecord(
                stud_id=stud_id,
                name=name,
                class_name=seed.class_name.strip(),
                parent_name=seed.parent_name.strip(),
                parent_no=seed.parent_no.strip(),
                phone_no=seed.phone_no.strip(),
                email=seed.email.strip(),
                created_at=utc_timestamp(),
            )
            await self.ledger.append(STUDENTS, student)

            account = FeeAccountRecord(
                stud_id=stud_id,
                name=student.name,
                class_name=student.class_name,
                total_fees=total_fees,
                total_paid=Decimal("0"),
                balance=total_fees,
                status=STATUS_UNPAID,
            )
            await self.ledger.append(FEES, account)

            logger.info(f"✅ Student added: {name} ({stud_id})")
            return RowOutcome(success=True, kind="student", record_id=stud_id, stud_id=stud_id,
                              name=name, fee_account=account)

        except Exception as e:
            logger.error(f"❌ Error adding student {name}: {e}")
            return RowOutcome(success=False, kind="student", name=name,
                              error=f"Could not add student {name or '(unnamed)'}: {e}")

    async def _record_installment(self, intent: InstallmentIntent, actor: str, created: Dict[str, str]) -> RowOutcome:
        target = intent.target
        try:
            amount = to_decimal(intent.installment_amount)
        except ValueError as e:
            return RowOutcome(success=False, kind="installment", name=target, error=str(e))
        if amount <= 0:
            return RowOutcome(success=False, kind="installment", name=target, amount=amount,
                              error=f"Installment amount must be greater than zero for {target}")

        try:
            student = await self._resolve(intent, created)
            if student is None:
                return RowOutcome(success=False, kind="installment", name=target, amount=amount,
                                  error=f"Student not found: {target}")

            installment = InstallmentRecord(
                inst_id=await self.ledger.allocate_id(INSTALLMENTS),
                stud_id=student.stud_id,
                name=student.name,
                class_name=student.class_name,
                installment_amount=amount,
                date=parse_date_flexible(intent.date) or intent.date.strip() or today_iso(),
                mode=intent.mode.strip() or "cash",
                remarks=intent.remarks.strip(),
                recorded_by=intent.recorded_by.strip() or actor,
                created_at=utc_timestamp(),
            )
            await self.ledger.append(INSTALLMENTS, installment)
            logger.info(f"💰 Installment {installment.inst_id}: {amount} for {student.stud_id}")

        except Exception as e:
            logger.error(f"❌ Error adding installment for {target}: {e}")
            return RowOutcome(success=False, kind="installment", name=target, amount=amount,
                              error=f"Could not record payment for {target}: {e}")

        outcome = RowOutcome(success=True, kind="installment", record_id=installment.inst_id,
                             stud_id=student.stud_id, name=student.name, amount=amount,
                             installment=installment)
        try:
            outcome.fee_account = await self.recompute_fee_account(student.stud_id)
        except Exception as e:
            logger.error(f"❌ Fee recompute failed for {student.stud_id}: {e}")
            outcome.success = False
            outcome.error = f"Payment {installment.inst_id} recorded but fee summary update failed: {e}"
        return outcome

    async def _resolve(self, intent: InstallmentIntent, created: Dict[str, str]) -> Optional[StudentRecord]:
        stud_id = intent.stud_id
        if not stud_id and intent.name:
            stud_id = created.get(intent.name.strip().lower(), "")
        return await self.ledger.resolve_student(stud_id, intent.name)

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def _log(self, result: MutationResult, action: str, outcome: str, stud_id: str,
                   raw_message: str, parsed_json: str, error_msg: str, performed_by: str):
        try:
            entry = await self.ledger.append_log(
                action=action,
                result=outcome,
                stud_id=stud_id,
                raw_message=raw_message,
                parsed_json=parsed_json,
                error_msg=error_msg,
                performed_by=performed_by,
            )
            result.logs.append(RowOutcome(success=True, kind="log", record_id=entry.log_id, stud_id=stud_id))
        except Exception as e:
            logger.error(f"❌ Failed to write {action} log: {e}")
            result.logs.append(RowOutcome(success=False, kind="log", stud_id=stud_id, error=str(e)))

    async def _append_seed_logs(self, change_set: ChangeSet, result: MutationResult, actor: str,
                                raw_message: str, snapshot: str):
        batch_result = result.batch_result
        written = [row for row in result.students + result.installments if row.stud_id]
        resolved_stud_id = written[0].stud_id if written else ""

        for seed in change_set.Logs:
            if seed.action == "parse_error":
                # Parse failures keep their own result and message
                await self._log(result, seed.action, seed.result or RESULT_FAIL, audit_stud_id(seed.stud_id),
                                seed.raw_message or raw_message, seed.parsed_json, seed.error_msg,
                                seed.performed_by or actor)
                continue

            errors = "; ".join(row.error for row in result.students + result.installments if row.error)
            await self._log(
                result,
                seed.action or "write_request",
                batch_result,
                resolved_stud_id or audit_stud_id(seed.stud_id),
                seed.raw_message or raw_message,
                snapshot,
                errors,
                seed.performed_by or actor,
            )


def summarize_for_admin(account: FeeAccountRecord) -> Dict[str, str]:
    symbol = settings.CURRENCY_SYMBOL
    return {
        "stud_id": account.stud_id,
        "total_fees": f"{symbol}{format_amount(account.total_fees)}",
        "total_paid": f"{symbol}{format_amount(account.total_paid)}",
        "balance": f"{symbol}{format_amount(account.balance)}",
        "status": account.status,
    }
