"""Tests for READ queries and their WhatsApp formatting"""

from datetime import date, timedelta

from chat2sheet.ai.read_parser import ReadRequest
from chat2sheet.schemas.changeset import ChangeSet
from chat2sheet.services.read_service import ReadService, format_read_response, resolve_date_filter

from conftest import add_student


def query(query_type, **parameters):
    return ReadRequest(query_type=query_type, parameters=parameters)


async def pay(mutations, stud_id, amount, date_text=""):
    change_set = ChangeSet.model_validate({"Installments": [
        {"stud_id": stud_id, "installment_amount": amount, "date": date_text, "mode": "upi"},
    ]})
    result = await mutations.apply_change_set(change_set, actor="t")
    assert result.success


class TestReadService:
    async def test_student_details_by_name(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul Sharma")
        result = await ReadService(ledger).process(query("student_details", name="rahul sharma"))

        assert result.success
        assert result.data.stud_id == stud_id
        assert f"• ID: {stud_id}" in format_read_response(result)

    async def test_partial_name_with_single_match(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul Sharma")
        await add_student(mutations, "Asha Verma")
        result = await ReadService(ledger).process(query("student_details", name="rahul"))
        assert result.data.stud_id == stud_id

    async def test_missing_student(self, ledger):
        result = await ReadService(ledger).process(query("fee_status", stud_id="STU404"))

        assert not result.success
        message = format_read_response(result)
        assert message.startswith("❌ *Error retrieving information*")
        assert "STU404 not found" in message

    async def test_payment_history_for_student(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul")
        await pay(mutations, stud_id, "1000", "2025-08-01")
        await pay(mutations, stud_id, "2000", "2025-08-15")

        result = await ReadService(ledger).process(query("payment_history", stud_id=stud_id))
        message = format_read_response(result)

        assert len(result.data.payments) == 2
        assert "Total Paid:* ₹3000" in message

    async def test_payments_by_date(self, ledger, mutations):
        first = await add_student(mutations, "Rahul")
        second = await add_student(mutations, "Asha")
        await pay(mutations, first, "1000", "2025-08-22")
        await pay(mutations, second, "500", "22/08/2025")
        await pay(mutations, second, "700", "2025-08-23")

        result = await ReadService(ledger).process(query("payment_history", date_filter="2025-08-22"))

        assert [p.stud_id for p in result.data.payments] == [first, second]
        assert "Total Amount Collected:* ₹1500" in format_read_response(result)

    async def test_class_report(self, ledger, mutations):
        await add_student(mutations, "Rahul", class_name="10")
        await add_student(mutations, "Asha", class_name="9")
        result = await ReadService(ledger).process(query("class_report", **{"class": "10"}))

        assert [s.name for s in result.data] == ["Rahul"]
        assert "Class 10 Report (1 students)" in format_read_response(result)

    async def test_aggregate_paid_less_than(self, ledger, mutations):
        rahul = await add_student(mutations, "Rahul", total_fees="10000")
        asha = await add_student(mutations, "Asha", total_fees="10000")
        await pay(mutations, rahul, "6000")
        await pay(mutations, asha, "2000")

        result = await ReadService(ledger).process(
            query("aggregate_summary", criteria="paid_less_than_5000", amount="5000")
        )

        assert result.data.total_count == 1
        assert result.data.students[0].stud_id == asha
        assert result.data.total_fees_collected == 8000
        assert result.data.total_outstanding == 12000

    async def test_aggregate_outstanding_by_class(self, ledger, mutations):
        await add_student(mutations, "Rahul", class_name="10", total_fees="100")
        await add_student(mutations, "Asha", class_name="9", total_fees="100")
        await add_student(mutations, "Ravi", class_name="10", total_fees="0")

        result = await ReadService(ledger).process(
            query("aggregate_summary", criteria="outstanding_fees", **{"class": "10"})
        )

        assert [row.name for row in result.data.students] == ["Rahul"]

    async def test_unknown_query_type(self, ledger):
        result = await ReadService(ledger).process(query("horoscope"))
        assert not result.success


class TestDateFilter:
    def test_yesterday(self):
        assert resolve_date_filter("yesterday") == (date.today() - timedelta(days=1)).isoformat()

    def test_formats(self):
        assert resolve_date_filter("22nd August 2025") == "2025-08-22"
        assert resolve_date_filter("22.08.2025") == "2025-08-22"
        assert resolve_date_filter("") is None
        assert resolve_date_filter("someday") is None
