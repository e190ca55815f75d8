# chat2sheet/schemas/ledger.py - Row-shaped records for the four ledger collections
from pydantic import BaseModel, Field, field_validator
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import re


STUDENTS = "students"
FEES = "fees"
INSTALLMENTS = "installments"
LOGS = "logs"

# Collections that own generated ids; fee rows are keyed by stud_id
ID_PREFIXES: Dict[str, str] = {
    STUDENTS: "STU",
    INSTALLMENTS: "INST",
    LOGS: "LOG",
}

STATUS_PAID = "Paid"
STATUS_PARTIAL = "Partial"
STATUS_PENDING = "Pending"
STATUS_UNPAID = "unpaid"

RESULT_SUCCESS = "success"
RESULT_FAIL = "fail"
RESULT_PARTIAL = "partial"
RESULT_PENDING = "pending"


# ============================================================================
# Helpers
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """
    Coerce a sheet cell or LLM field into a Decimal amount.

    Accepts numbers, numeric strings with thousands separators or a currency
    prefix, and treats None / "" as zero.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    text = str(value).strip().replace(",", "")
    text = re.sub(r"^(₹|rs\.?|inr)\s*", "", text, flags=re.IGNORECASE)
    if not text:
        return Decimal("0")
    try:
        return Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")


def format_amount(value: Any) -> str:
    """Render an amount for chat messages: 40000, 1250.50"""
    amount = to_decimal(value)
    if amount == amount.to_integral_value():
        return str(int(amount))
    return f"{amount:.2f}"


def amount_cell(value: Any) -> Union[int, float]:
    """Render an amount as a JSON number for a spreadsheet cell"""
    amount = to_decimal(value)
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def format_id(prefix: str, number: int, width: int = 3) -> str:
    return f"{prefix}{number:0{width}d}"


def parse_id_number(prefix: str, value: Any) -> Optional[int]:
    """Numeric part of an id such as STU007, or None when it has another shape"""
    if value is None:
        return None
    match = re.fullmatch(rf"{re.escape(prefix)}(\d+)", str(value).strip(), flags=re.IGNORECASE)
    return int(match.group(1)) if match else None


def fee_status(total_paid: Decimal, balance: Decimal) -> str:
    """Paid when nothing is owed, Partial once anything was paid, else Pending"""
    if balance <= 0:
        return STATUS_PAID
    if total_paid > 0:
        return STATUS_PARTIAL
    return STATUS_PENDING


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def today_iso() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def parse_date_flexible(date_str: str) -> Optional[str]:
    """
    Parse various date formats to YYYY-MM-DD

    Args:
        date_str: Date string in various formats

    Returns:
        Date in YYYY-MM-DD format or None
    """
    formats = [
        "%Y-%m-%d",
        "%d/%m/%Y",
        "%d-%m-%Y",
        "%d.%m.%Y",
        "%B %d, %Y",      # August 22, 2025
        "%d %B %Y",       # 22 August 2025
        "%d %b %Y",       # 22 Aug 2025
    ]

    date_str = re.sub(r"(\d+)(st|nd|rd|th)\b", r"\1", (date_str or "").strip())
    lowered = date_str.lower()
    if lowered == "today":
        return today_iso()

    for fmt in formats:
        try:
            return datetime.strptime(date_str, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue

    return None


# ============================================================================
# Records
# ============================================================================

class LedgerRecord(BaseModel):
    """Base for one row of a ledger collection"""

    COLUMNS: ClassVar[Tuple[str, ...]] = ()
    AMOUNT_FIELDS: ClassVar[Tuple[str, ...]] = ()

    class Config:
        populate_by_name = True

    @classmethod
    def from_row(cls, row: List[Any]):
        """Build a record from a sheet row; short rows are padded with blanks"""
        values: Dict[str, Any] = {}
        for index, column in enumerate(cls.COLUMNS):
            value = row[index] if index < len(row) else ""
            if column not in cls.AMOUNT_FIELDS:
                value = "" if value is None else str(value).strip()
            values[column] = value
        return cls.model_validate(values)

    def to_row(self) -> List[Any]:
        data = self.model_dump(by_alias=True)
        return [
            amount_cell(data[column]) if column in self.AMOUNT_FIELDS else data[column]
            for column in self.COLUMNS
        ]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict keyed by sheet column names"""
        return self.model_dump(by_alias=True, mode="json")


class StudentRecord(LedgerRecord):
    COLUMNS: ClassVar[Tuple[str, ...]] = (
        "stud_id", "name", "class", "parent_name", "parent_no", "phone_no", "email", "created_at",
    )

    stud_id: str = ""
    name: str = ""
    class_name: str = Field(default="", alias="class")
    parent_name: str = ""
    parent_no: str = ""
    phone_no: str = ""
    email: str = ""
    created_at: str = ""


class FeeAccountRecord(LedgerRecord):
    COLUMNS: ClassVar[Tuple[str, ...]] = (
        "stud_id", "name", "class", "total_fees", "total_paid", "balance", "status",
    )
    AMOUNT_FIELDS: ClassVar[Tuple[str, ...]] = ("total_fees", "total_paid", "balance")

    stud_id: str = ""
    name: str = ""
    class_name: str = Field(default="", alias="class")
    total_fees: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    status: str = STATUS_PENDING

    @field_validator("total_fees", "total_paid", "balance", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return to_decimal(v)


class InstallmentRecord(LedgerRecord):
    COLUMNS: ClassVar[Tuple[str, ...]] = (
        "inst_id", "stud_id", "name", "class", "installment_amount",
        "date", "mode", "remarks", "recorded_by", "created_at",
    )
    AMOUNT_FIELDS: ClassVar[Tuple[str, ...]] = ("installment_amount",)

    inst_id: str = ""
    stud_id: str = ""
    name: str = ""
    class_name: str = Field(default="", alias="class")
    installment_amount: Decimal = Decimal("0")
    date: str = ""
    mode: str = ""
    remarks: str = ""
    recorded_by: str = ""
    created_at: str = ""

    @field_validator("installment_amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return to_decimal(v)


class LogRecord(LedgerRecord):
    COLUMNS: ClassVar[Tuple[str, ...]] = (
        "log_id", "action", "stud_id", "raw_message", "parsed_json",
        "result", "error_msg", "performed_by", "timestamp",
    )

    log_id: str = ""
    action: str
    stud_id: str = ""
    raw_message: str = ""
    parsed_json: str = ""
    result: str = RESULT_SUCCESS
    error_msg: str = ""
    performed_by: str = "system"
    timestamp: str = ""


RECORD_TYPES: Dict[str, Type[LedgerRecord]] = {
    STUDENTS: StudentRecord,
    FEES: FeeAccountRecord,
    INSTALLMENTS: InstallmentRecord,
    LOGS: LogRecord,
}


def column_letter(count: int) -> str:
    """Last column letter for a collection width (8 -> H)"""
    return chr(ord("A") + count - 1)
