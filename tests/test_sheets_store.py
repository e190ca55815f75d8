"""Tests for the Google Sheets backend against an in-memory values API"""

import asyncio
import json
from decimal import Decimal
from urllib.parse import unquote

import httpx
import pytest

from chat2sheet.core.config import settings
from chat2sheet.schemas.changeset import ChangeSet
from chat2sheet.schemas.ledger import INSTALLMENTS, RECORD_TYPES, STUDENTS
from chat2sheet.services.ledger_service import LedgerMutationService
from chat2sheet.services.ledger_store import LedgerStoreError
from chat2sheet.services.sheets_store import SheetsLedgerStore

from conftest import add_student


class FakeSheets:
    """Just enough of the values API: get, append and update"""

    def __init__(self):
        names = settings.sheet_names()
        self.sheets = {names[c]: [list(RECORD_TYPES[c].COLUMNS)] for c in RECORD_TYPES}
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer token-1"
        path = unquote(request.url.path.split("/values/", 1)[1])
        self.calls.append((request.method, path))

        if request.method == "POST" and path.endswith(":append"):
            sheet = path[: -len(":append")].split("!")[0]
            self.sheets[sheet].extend(json.loads(request.content)["values"])
            return httpx.Response(200, json={"updates": {"updatedRows": 1}})

        sheet, cells = path.split("!")
        rows = self.sheets[sheet]
        if request.method == "GET":
            if cells == "A:A":
                return httpx.Response(200, json={"values": [row[:1] for row in rows]})
            return httpx.Response(200, json={"values": rows})

        if request.method == "PUT":
            row_number = int(cells.split(":")[0][1:])
            rows[row_number - 1][4:7] = json.loads(request.content)["values"][0]
            return httpx.Response(200, json={})

        return httpx.Response(405)


async def token():
    return "token-1"


@pytest.fixture
def fake_sheets():
    return FakeSheets()


@pytest.fixture
def sheets_store(fake_sheets):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_sheets))
    return SheetsLedgerStore(spreadsheet_id="sheet-1", token_provider=token, client=client)


class TestSheetsLedgerStore:
    def test_requires_spreadsheet_id(self, monkeypatch):
        monkeypatch.setattr(settings, "SPREADSHEET_ID", None)
        with pytest.raises(LedgerStoreError):
            SheetsLedgerStore(token_provider=token, client=httpx.AsyncClient())

    async def test_student_installment_and_recompute(self, sheets_store, fake_sheets):
        mutations = LedgerMutationService(sheets_store)
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")

        result = await mutations.apply_change_set(
            ChangeSet.model_validate({"Installments": [{"stud_id": stud_id, "installment_amount": "4000"}]}),
            actor="t",
        )

        assert result.success
        fee_rows = fake_sheets.sheets[settings.SHEET_FEES]
        assert fee_rows[1] == [stud_id, "Rahul", "10", 40000, 4000, 36000, "Partial"]
        assert fake_sheets.sheets[settings.SHEET_INSTALLMENTS][1][0] == "INST001"

        account = await sheets_store.get_fee_account(stud_id)
        assert account.balance == Decimal("36000")

    async def test_concurrent_ids_are_unique(self, sheets_store):
        ids = await asyncio.gather(*(sheets_store.allocate_id(STUDENTS) for _ in range(5)))
        assert sorted(ids) == ["STU001", "STU002", "STU003", "STU004", "STU005"]

    async def test_ids_continue_from_sheet(self, sheets_store, fake_sheets):
        fake_sheets.sheets[settings.SHEET_INSTALLMENTS].append(["INST041", "STU001"])
        assert await sheets_store.allocate_id(INSTALLMENTS) == "INST042"

    async def test_blank_rows_are_skipped(self, sheets_store, fake_sheets):
        fake_sheets.sheets[settings.SHEET_STUDENTS].extend([[], ["", ""], ["STU007", "Asha", 9, "", 9876543210]])

        students = await sheets_store.list_students()

        assert len(students) == 1
        assert students[0].class_name == "9"
        assert students[0].parent_no == "9876543210"

    async def test_update_missing_account(self, sheets_store):
        with pytest.raises(LedgerStoreError):
            await sheets_store.update_fee_totals("STU404", Decimal("1"), Decimal("1"), "Paid")

    async def test_api_errors_become_store_errors(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="oops")))
        store = SheetsLedgerStore(spreadsheet_id="sheet-1", token_provider=token, client=client)

        with pytest.raises(LedgerStoreError):
            await store.list_students()
        health = await store.health_check()
        assert health["status"] == "unhealthy"
