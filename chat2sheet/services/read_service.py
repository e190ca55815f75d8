# chat2sheet/services/read_service.py - Answers READ queries from the ledger
import logging
import re
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, List, Optional
from pydantic import BaseModel, Field

from chat2sheet.ai.read_parser import ReadRequest
from chat2sheet.core.config import settings
from chat2sheet.schemas.ledger import (
    FeeAccountRecord, InstallmentRecord, StudentRecord,
    format_amount, parse_date_flexible, to_decimal,
)
from chat2sheet.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

CRITERIA_PATTERN = re.compile(r"(paid|balance)_(less|more)_than_(\d+(?:\.\d+)?)")


class ReadError(Exception):
    """A query that cannot be answered, with a message fit for the user"""
    pass


class AggregateRow(BaseModel):
    stud_id: str
    name: str
    class_name: str
    paid: Decimal
    balance: Decimal


class AggregateSummary(BaseModel):
    query: str
    total_count: int = 0
    students: List[AggregateRow] = Field(default_factory=list)
    total_outstanding: Decimal = Decimal("0")
    total_fees_collected: Decimal = Decimal("0")


class PaymentReport(BaseModel):
    payments: List[InstallmentRecord] = Field(default_factory=list)
    student: Optional[StudentRecord] = None
    date_filter: Optional[str] = None


class ReadResult(BaseModel):
    success: bool
    query_type: str
    data: Any = None
    message: str = ""


def resolve_date_filter(value: str) -> Optional[str]:
    lowered = (value or "").strip().lower()
    if not lowered:
        return None
    if lowered == "yesterday":
        return (date.today() - timedelta(days=1)).isoformat()
    return parse_date_flexible(value)


class ReadService:
    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    async def process(self, request: ReadRequest) -> ReadResult:
        logger.info(f"📖 Processing read request: {request.query_type} {request.parameters}")
        handlers = {
            "student_details": self.student_details,
            "fee_status": self.fee_status,
            "payment_history": self.payment_history,
            "student_search": self.student_search,
            "class_report": self.class_report,
            "aggregate_summary": self.aggregate_summary,
        }
        handler = handlers.get(request.query_type)
        try:
            if handler is None:
                raise ReadError(f"Unknown query type: {request.query_type}")
            data = await handler(request)
            return ReadResult(success=True, query_type=request.query_type, data=data)
        except ReadError as e:
            return ReadResult(success=False, query_type=request.query_type, message=str(e))
        except Exception as e:
            logger.error(f"❌ Read processing error: {e}", exc_info=True)
            return ReadResult(success=False, query_type=request.query_type, message=str(e))

    # ------------------------------------------------------------------
    # Query types
    # ------------------------------------------------------------------

    async def _student(self, request: ReadRequest) -> StudentRecord:
        stud_id = request.param("stud_id")
        name = request.param("name")
        if not stud_id and not name:
            raise ReadError("Student ID or name is required")

        student = await self.ledger.resolve_student(stud_id, name)
        if student is None and name:
            matches = await self.ledger.search_students(name)
            student = matches[0] if len(matches) == 1 else None
        if student is None:
            raise ReadError(f"Student {stud_id or name} not found")
        return student

    async def student_details(self, request: ReadRequest) -> StudentRecord:
        return await self._student(request)

    async def fee_status(self, request: ReadRequest) -> FeeAccountRecord:
        student = await self._student(request)
        account = await self.ledger.get_fee_account(student.stud_id)
        if account is None:
            raise ReadError(f"Fee information not found for {student.name}")
        return account

    async def payment_history(self, request: ReadRequest) -> PaymentReport:
        if request.param("stud_id") or request.param("name"):
            student = await self._student(request)
            return PaymentReport(
                student=student,
                payments=await self.ledger.installments_for_student(student.stud_id),
            )

        day = resolve_date_filter(request.param("date_filter") or request.param("date"))
        if day is None:
            raise ReadError("Please mention a student ID, a name or a date for payment history")
        payments = [i for i in await self.ledger.list_installments() if i.date == day]
        return PaymentReport(payments=payments, date_filter=day)

    async def student_search(self, request: ReadRequest) -> List[StudentRecord]:
        if request.param("stud_id"):
            student = await self.ledger.find_student_by_id(request.param("stud_id"))
            return [student] if student else []
        if request.param("name"):
            return await self.ledger.search_students(request.param("name"))
        if request.param("class"):
            return await self.ledger.students_by_class(request.param("class"))
        return await self.ledger.list_students()

    async def class_report(self, request: ReadRequest) -> List[StudentRecord]:
        class_name = request.param("class")
        if not class_name:
            raise ReadError("Please mention a class, e.g. class 10")
        return await self.ledger.students_by_class(class_name)

    async def aggregate_summary(self, request: ReadRequest) -> AggregateSummary:
        criteria = request.param("criteria").lower()
        class_filter = request.param("class").lower()

        accounts = await self.ledger.list_fee_accounts()
        if class_filter:
            accounts = [a for a in accounts if a.class_name.strip().lower() == class_filter]

        selected, title = self._select(accounts, criteria, request.param("amount"))
        summary = AggregateSummary(
            query=title,
            total_count=len(selected),
            students=[
                AggregateRow(
                    stud_id=a.stud_id,
                    name=a.name,
                    class_name=a.class_name,
                    paid=a.total_paid,
                    balance=a.balance,
                )
                for a in selected
            ],
            total_outstanding=sum((max(a.balance, Decimal("0")) for a in accounts), Decimal("0")),
            total_fees_collected=sum((a.total_paid for a in accounts), Decimal("0")),
        )
        return summary

    def _select(self, accounts: List[FeeAccountRecord], criteria: str, amount: str):
        symbol = settings.CURRENCY_SYMBOL
        match = CRITERIA_PATTERN.fullmatch(criteria)
        if match:
            field, direction, threshold = match.groups()
            limit = to_decimal(amount or threshold)
            attribute = "total_paid" if field == "paid" else "balance"
            if direction == "less":
                chosen = [a for a in accounts if getattr(a, attribute) < limit]
            else:
                chosen = [a for a in accounts if getattr(a, attribute) > limit]
            label = "paid" if field == "paid" else "balance"
            return chosen, f"Students with {label} {direction} than {symbol}{format_amount(limit)}"

        if criteria in ("outstanding_fees", "pending", "outstanding"):
            return [a for a in accounts if a.balance > 0], "Students with outstanding fees"
        if criteria == "fully_paid":
            return [a for a in accounts if a.balance <= 0], "Students with fees fully paid"
        if criteria == "total_collected":
            return [], "Fee collection summary"
        return accounts, "All students fee summary"


# ============================================================================
# Reply formatting
# ============================================================================

def format_read_response(result: ReadResult) -> str:
    symbol = settings.CURRENCY_SYMBOL
    if not result.success:
        return f"❌ *Error retrieving information*\n\nError: {result.message}"

    lines = ["📊 *Information Retrieved*", ""]
    data = result.data

    if result.query_type == "student_details":
        lines += [
            "👨‍🎓 *Student Details:*",
            f"• ID: {data.stud_id}",
            f"• Name: {data.name}",
            f"• Class: {data.class_name}",
            f"• Parent: {data.parent_name}",
            f"• Phone: {data.phone_no}",
        ]
        if data.email:
            lines.append(f"• Email: {data.email}")

    elif result.query_type == "fee_status":
        lines += [
            f"💰 *Fee Status for {data.name}:*",
            f"• Total Fees: {symbol}{format_amount(data.total_fees)}",
            f"• Paid: {symbol}{format_amount(data.total_paid)}",
            f"• Balance: {symbol}{format_amount(data.balance)}",
            f"• Status: {data.status}",
        ]

    elif result.query_type == "payment_history":
        lines += _payment_lines(data, symbol)

    elif result.query_type == "student_search":
        if data:
            lines.append(f"🔍 *Search Results ({len(data)} found):*")
            lines += [f"• {s.name} ({s.stud_id}) - Class {s.class_name}" for s in data]
        else:
            lines.append("❌ No students found")

    elif result.query_type == "class_report":
        if data:
            lines.append(f"📚 *Class {data[0].class_name} Report ({len(data)} students):*")
            lines += [f"• {s.name} ({s.stud_id})" for s in data]
        else:
            lines.append("❌ No students found in this class")

    elif result.query_type == "aggregate_summary":
        lines += [f"📊 *{data.query}*", "", f"📈 *Total Count:* {data.total_count}", ""]
        if data.students:
            lines.append("👥 *Students List:*")
            for index, row in enumerate(data.students, start=1):
                lines.append(f"{index}. {row.name} ({row.stud_id}) - Class {row.class_name}")
                lines.append(f"   Paid: {symbol}{format_amount(row.paid)}, Balance: {symbol}{format_amount(row.balance)}")
            lines.append("")
        lines.append(f"💰 *Total Outstanding:* {symbol}{format_amount(data.total_outstanding)}")
        lines.append(f"💰 *Total Collected:* {symbol}{format_amount(data.total_fees_collected)}")

    return "\n".join(lines).strip()


def _payment_lines(report: PaymentReport, symbol: str) -> List[str]:
    if not report.payments:
        return ["❌ No payment history found"]

    total = sum((p.installment_amount for p in report.payments), Decimal("0"))
    if report.student is None:
        lines = [f"📅 *Payments Report ({report.date_filter}):*", f"📈 *Total Payments:* {len(report.payments)}", ""]
    else:
        lines = [f"📈 *Payment History for {report.student.name} ({report.student.stud_id}):*"]

    for index, payment in enumerate(report.payments, start=1):
        if report.student is None:
            lines.append(f"{index}. {payment.name} ({payment.stud_id})")
            lines.append(f"   🆔 Installment ID: {payment.inst_id}")
        else:
            lines.append(f"{index}. 🆔 {payment.inst_id}")
        lines.append(f"   💰 Amount: {symbol}{format_amount(payment.installment_amount)}")
        lines.append(f"   📅 Date: {payment.date or 'Unknown date'}")
        lines.append(f"   💳 Mode: {payment.mode or 'Unknown mode'}")
        if payment.remarks:
            lines.append(f"   📝 Remarks: {payment.remarks}")
        lines.append("")

    label = "Total Amount Collected" if report.student is None else "Total Paid"
    lines.append(f"💰 *{label}:* {symbol}{format_amount(total)}")
    return lines
