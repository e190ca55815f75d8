# chat2sheet/services/ledger_store.py - Ledger facade shared by every service
"""
The Ledger Store holds four row collections (students, fees, installments,
logs). Backends implement the four primitive operations; lookups used by the
confirmation preview, mutation, read, reminder and payment code live here so
none of those services depend on each other.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from chat2sheet.schemas.ledger import (
    FEES, INSTALLMENTS, LOGS, STUDENTS,
    FeeAccountRecord, InstallmentRecord, LedgerRecord, LogRecord, StudentRecord,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


class LedgerStoreError(Exception):
    """Raised when the backing store rejects or cannot serve a request"""
    pass


class LedgerStore(ABC):
    """Abstract row store for the fee ledger"""

    backend_name = "abstract"

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def allocate_id(self, collection: str) -> str:
        """Reserve the next id for students, installments or logs"""

    @abstractmethod
    async def append(self, collection: str, record: LedgerRecord) -> LedgerRecord:
        """Append one row; the record must already carry its id"""

    @abstractmethod
    async def read_all(self, collection: str) -> List[LedgerRecord]:
        """All rows of a collection in insertion order"""

    @abstractmethod
    async def update_fee_totals(
        self,
        stud_id: str,
        total_paid: Decimal,
        balance: Decimal,
        status: str,
    ) -> FeeAccountRecord:
        """Overwrite the aggregate columns of a student's fee account"""

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "unknown", "backend": self.backend_name}

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def list_students(self) -> List[StudentRecord]:
        return [s for s in await self.read_all(STUDENTS) if s.stud_id]

    async def find_student_by_id(self, stud_id: str) -> Optional[StudentRecord]:
        if not stud_id:
            return None
        wanted = stud_id.strip().upper()
        for student in await self.list_students():
            if student.stud_id.upper() == wanted:
                return student
        return None

    async def find_student_by_name(self, name: str) -> Optional[StudentRecord]:
        """Exact, case-insensitive name match"""
        if not name or not name.strip():
            return None
        wanted = name.strip().lower()
        for student in await self.list_students():
            if student.name.strip().lower() == wanted:
                return student
        return None

    async def search_students(self, name: str) -> List[StudentRecord]:
        """Case-insensitive substring search on student names"""
        wanted = (name or "").strip().lower()
        students = await self.list_students()
        if not wanted:
            return students
        return [s for s in students if wanted in s.name.lower()]

    async def resolve_student(self, stud_id: str = "", name: str = "") -> Optional[StudentRecord]:
        """Resolve by id first, then by name"""
        student = await self.find_student_by_id(stud_id) if stud_id else None
        if student is None and name:
            student = await self.find_student_by_name(name)
        return student

    async def students_by_class(self, class_name: str) -> List[StudentRecord]:
        wanted = str(class_name).strip().lower()
        return [s for s in await self.list_students() if s.class_name.strip().lower() == wanted]

    async def list_fee_accounts(self) -> List[FeeAccountRecord]:
        return [f for f in await self.read_all(FEES) if f.stud_id]

    async def get_fee_account(self, stud_id: str) -> Optional[FeeAccountRecord]:
        if not stud_id:
            return None
        wanted = stud_id.strip().upper()
        for fee in await self.list_fee_accounts():
            if fee.stud_id.upper() == wanted:
                return fee
        return None

    async def list_installments(self) -> List[InstallmentRecord]:
        return [i for i in await self.read_all(INSTALLMENTS) if i.inst_id]

    async def installments_for_student(self, stud_id: str) -> List[InstallmentRecord]:
        wanted = stud_id.strip().upper()
        return [i for i in await self.list_installments() if i.stud_id.upper() == wanted]

    async def list_logs(self) -> List[LogRecord]:
        return [entry for entry in await self.read_all(LOGS) if entry.log_id]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def append_log(
        self,
        action: str,
        result: str,
        stud_id: str = "",
        raw_message: str = "",
        parsed_json: str = "",
        error_msg: str = "",
        performed_by: str = "system",
    ) -> LogRecord:
        """Allocate a LOG id and append one audit row"""
        entry = LogRecord(
            log_id=await self.allocate_id(LOGS),
            action=action,
            stud_id=stud_id or "",
            raw_message=raw_message or "",
            parsed_json=parsed_json or "",
            result=result,
            error_msg=error_msg or "",
            performed_by=performed_by or "system",
            timestamp=utc_timestamp(),
        )
        await self.append(LOGS, entry)
        logger.info(f"📝 Log {entry.log_id}: {action} -> {result}")
        return entry
