# chat2sheet/services/sql_store.py - SQLAlchemy ledger backend (local/dev and tests)
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from chat2sheet.core.db import DatabaseManager, db_manager
from chat2sheet.models import FeeAccount, IdSequence, Installment, LogEntry, Student
from chat2sheet.schemas.ledger import (
    FEES, ID_PREFIXES, INSTALLMENTS, LOGS, STUDENTS,
    FeeAccountRecord, InstallmentRecord, LedgerRecord, LogRecord, StudentRecord,
    format_id, parse_id_number,
)
from chat2sheet.services.ledger_store import LedgerStore, LedgerStoreError

logger = logging.getLogger(__name__)


MODELS = {
    STUDENTS: Student,
    FEES: FeeAccount,
    INSTALLMENTS: Installment,
    LOGS: LogEntry,
}

ID_COLUMNS = {
    STUDENTS: "stud_id",
    INSTALLMENTS: "inst_id",
    LOGS: "log_id",
}


def _parse_timestamp(value: str) -> datetime:
    if not value:
        return datetime.utcnow()
    try:
        return datetime.fromisoformat(value.strip().rstrip("Z"))
    except ValueError:
        return datetime.utcnow()


def _format_timestamp(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ") if value else ""


class SQLLedgerStore(LedgerStore):
    """
    Ledger rows in relational tables.

    Ids come from the id_sequences counter table; the primary key on every
    collection rejects a duplicate even if two processes share a database.
    Session work runs in worker threads through asyncio.to_thread.
    """

    backend_name = "sql"

    def __init__(self, manager: Optional[DatabaseManager] = None, create_tables: bool = True):
        self.db = manager or db_manager
        self._locks: Dict[str, asyncio.Lock] = {}
        if create_tables:
            self.db.create_all()

    def _lock_for(self, collection: str) -> asyncio.Lock:
        if collection not in self._locks:
            self._locks[collection] = asyncio.Lock()
        return self._locks[collection]

    @staticmethod
    def _check_collection(collection: str):
        if collection not in MODELS:
            raise LedgerStoreError(f"Unknown collection: {collection}")

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def allocate_id(self, collection: str) -> str:
        prefix = ID_PREFIXES.get(collection)
        if prefix is None:
            raise LedgerStoreError(f"Collection {collection} has no generated ids")

        async with self._lock_for(collection):
            number = await asyncio.to_thread(self._next_number, collection)
        return format_id(prefix, number)

    def _next_number(self, collection: str) -> int:
        try:
            with self.db.transaction() as session:
                sequence = session.get(IdSequence, collection, with_for_update=True)
                if sequence is None:
                    sequence = IdSequence(collection=collection, last_value=self._max_existing(session, collection))
                    session.add(sequence)
                sequence.last_value += 1
                return sequence.last_value
        except SQLAlchemyError as e:
            raise LedgerStoreError(f"Could not allocate {ID_PREFIXES[collection]} id: {e}") from e

    @staticmethod
    def _max_existing(session, collection: str) -> int:
        """Highest id already stored, so a counter created late never reissues one"""
        model = MODELS[collection]
        column = getattr(model, ID_COLUMNS[collection])
        prefix = ID_PREFIXES[collection]
        numbers = [parse_id_number(prefix, value) for value in session.execute(select(column)).scalars()]
        return max([n for n in numbers if n is not None], default=0)

    async def append(self, collection: str, record: LedgerRecord) -> LedgerRecord:
        self._check_collection(collection)
        await asyncio.to_thread(self._insert, collection, record)
        return record

    def _insert(self, collection: str, record: LedgerRecord):
        try:
            with self.db.transaction() as session:
                session.add(self._to_model(collection, record))
        except IntegrityError as e:
            raise LedgerStoreError(f"Rejected {collection} row: {e.orig}") from e
        except SQLAlchemyError as e:
            raise LedgerStoreError(f"Could not append to {collection}: {e}") from e

    async def read_all(self, collection: str) -> List[LedgerRecord]:
        self._check_collection(collection)
        records = await asyncio.to_thread(self._select_all, collection)

        if collection in ID_PREFIXES:
            prefix = ID_PREFIXES[collection]
            id_column = ID_COLUMNS[collection]
            records.sort(key=lambda r: parse_id_number(prefix, getattr(r, id_column)) or 0)
        return records

    def _select_all(self, collection: str) -> List[LedgerRecord]:
        try:
            with self.db.transaction() as session:
                rows = session.execute(select(MODELS[collection])).scalars().all()
                return [self._to_record(collection, row) for row in rows]
        except SQLAlchemyError as e:
            raise LedgerStoreError(f"Could not read {collection}: {e}") from e

    async def update_fee_totals(
        self,
        stud_id: str,
        total_paid: Decimal,
        balance: Decimal,
        status: str,
    ) -> FeeAccountRecord:
        return await asyncio.to_thread(self._write_fee_totals, stud_id, total_paid, balance, status)

    def _write_fee_totals(self, stud_id: str, total_paid: Decimal, balance: Decimal, status: str) -> FeeAccountRecord:
        try:
            with self.db.transaction() as session:
                account = session.get(FeeAccount, stud_id)
                if account is None:
                    raise LedgerStoreError(f"No fee account for {stud_id}")
                account.total_paid = total_paid
                account.balance = balance
                account.status = status
                session.flush()
                return self._to_record(FEES, account)
        except SQLAlchemyError as e:
            raise LedgerStoreError(f"Could not update fee account {stud_id}: {e}") from e

    async def health_check(self):
        return {"backend": self.backend_name, **await asyncio.to_thread(self.db.health_check)}

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_model(collection: str, record: LedgerRecord):
        if collection == STUDENTS:
            return Student(
                stud_id=record.stud_id,
                name=record.name,
                class_name=record.class_name,
                parent_name=record.parent_name,
                parent_no=record.parent_no,
                phone_no=record.phone_no,
                email=record.email,
                created_at=_parse_timestamp(record.created_at),
            )
        if collection == FEES:
            return FeeAccount(
                stud_id=record.stud_id,
                name=record.name,
                class_name=record.class_name,
                total_fees=record.total_fees,
                total_paid=record.total_paid,
                balance=record.balance,
                status=record.status,
            )
        if collection == INSTALLMENTS:
            return Installment(
                inst_id=record.inst_id,
                stud_id=record.stud_id,
                name=record.name,
                class_name=record.class_name,
                installment_amount=record.installment_amount,
                date=record.date,
                mode=record.mode,
                remarks=record.remarks,
                recorded_by=record.recorded_by,
                created_at=_parse_timestamp(record.created_at),
            )
        return LogEntry(
            log_id=record.log_id,
            action=record.action,
            stud_id=record.stud_id,
            raw_message=record.raw_message,
            parsed_json=record.parsed_json,
            result=record.result,
            error_msg=record.error_msg,
            performed_by=record.performed_by,
            timestamp=_parse_timestamp(record.timestamp),
        )

    @staticmethod
    def _to_record(collection: str, row) -> LedgerRecord:
        if collection == STUDENTS:
            return StudentRecord(
                stud_id=row.stud_id,
                name=row.name,
                class_name=row.class_name or "",
                parent_name=row.parent_name or "",
                parent_no=row.parent_no or "",
                phone_no=row.phone_no or "",
                email=row.email or "",
                created_at=_format_timestamp(row.created_at),
            )
        if collection == FEES:
            return FeeAccountRecord(
                stud_id=row.stud_id,
                name=row.name or "",
                class_name=row.class_name or "",
                total_fees=row.total_fees,
                total_paid=row.total_paid,
                balance=row.balance,
                status=row.status,
            )
        if collection == INSTALLMENTS:
            return InstallmentRecord(
                inst_id=row.inst_id,
                stud_id=row.stud_id,
                name=row.name or "",
                class_name=row.class_name or "",
                installment_amount=row.installment_amount,
                date=row.date or "",
                mode=row.mode or "",
                remarks=row.remarks or "",
                recorded_by=row.recorded_by or "",
                created_at=_format_timestamp(row.created_at),
            )
        return LogRecord(
            log_id=row.log_id,
            action=row.action,
            stud_id=row.stud_id or "",
            raw_message=row.raw_message or "",
            parsed_json=row.parsed_json or "",
            result=row.result,
            error_msg=row.error_msg or "",
            performed_by=row.performed_by or "",
            timestamp=_format_timestamp(row.timestamp),
        )
