"""Tests for the ledger mutation service and fee recompute"""

from decimal import Decimal

import pytest

from chat2sheet.schemas.changeset import ChangeSet
from chat2sheet.schemas.ledger import INSTALLMENTS, fee_status
from chat2sheet.services.ledger_store import LedgerStoreError

from conftest import add_student


def installment(target, amount, **extra):
    seed = {"installment_amount": amount, **extra}
    seed["stud_id" if target.upper().startswith("STU") else "name"] = target
    return ChangeSet.model_validate({"Installments": [seed]})


class TestFeeStatus:
    def test_rules(self):
        assert fee_status(Decimal("0"), Decimal("40000")) == "Pending"
        assert fee_status(Decimal("4000"), Decimal("36000")) == "Partial"
        assert fee_status(Decimal("40000"), Decimal("0")) == "Paid"
        assert fee_status(Decimal("45000"), Decimal("-5000")) == "Paid"


class TestCreateStudent:
    async def test_student_and_fee_account_created(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")

        assert stud_id == "STU001"
        student = await ledger.find_student_by_id(stud_id)
        assert student.name == "Rahul"
        assert student.class_name == "10"

        account = await ledger.get_fee_account(stud_id)
        assert account.total_fees == Decimal("40000")
        assert account.total_paid == Decimal("0")
        assert account.balance == Decimal("40000")
        assert account.status == "unpaid"

    async def test_ids_are_sequential(self, mutations):
        assert await add_student(mutations, "A") == "STU001"
        assert await add_student(mutations, "B") == "STU002"
        assert await add_student(mutations, "C") == "STU003"

    async def test_negative_fees_fail_the_row(self, ledger, mutations):
        change_set = ChangeSet.model_validate({
            "Students": [{"name": "Neg", "class": "5"}],
            "Fees": [{"name": "Neg", "total_fees": "-10"}],
        })
        result = await mutations.apply_change_set(change_set, actor="test")

        assert not result.success
        assert result.batch_result == "fail"
        assert await ledger.list_students() == []
        logs = await ledger.list_logs()
        assert [(entry.action, entry.result) for entry in logs] == [("add_student", "fail")]


class TestRecordInstallment:
    async def test_installment_updates_fee_account(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")

        result = await mutations.apply_change_set(installment(stud_id, "4000"), actor="whatsapp_9190")

        assert result.success
        row = result.installments[0]
        assert row.record_id == "INST001"
        assert row.installment.mode == "cash"
        assert row.installment.recorded_by == "whatsapp_9190"
        account = await ledger.get_fee_account(stud_id)
        assert account.total_paid == Decimal("4000")
        assert account.balance == Decimal("36000")
        assert account.status == "Partial"

    async def test_full_payment_marks_paid(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul", total_fees="10000")
        await mutations.apply_change_set(installment(stud_id, "6000"), actor="t")
        await mutations.apply_change_set(installment(stud_id, "4000"), actor="t")

        account = await ledger.get_fee_account(stud_id)
        assert account.total_paid == Decimal("10000")
        assert account.balance == Decimal("0")
        assert account.status == "Paid"

    async def test_resolves_by_name(self, ledger, mutations):
        stud_id = await add_student(mutations, "Asha Verma")
        result = await mutations.apply_change_set(installment("asha verma", "1500"), actor="t")

        assert result.success
        assert result.installments[0].stud_id == stud_id

    async def test_unknown_student_fails_row(self, ledger, mutations):
        result = await mutations.apply_change_set(installment("STU999", "100"), actor="t")

        assert not result.success
        assert result.installments[0].error == "Student not found: STU999"
        assert await ledger.list_installments() == []
        logs = await ledger.list_logs()
        assert logs[0].action == "add_installment"
        assert logs[0].result == "fail"

    async def test_date_is_normalised(self, mutations):
        stud_id = await add_student(mutations, "Rahul")
        result = await mutations.apply_change_set(installment(stud_id, "100", date="22/08/2025"), actor="t")
        assert result.installments[0].installment.date == "2025-08-22"

    async def test_zero_amount_fails(self, mutations):
        stud_id = await add_student(mutations, "Rahul")
        result = await mutations.apply_change_set(installment(stud_id, "0"), actor="t")
        assert not result.success
        assert result.installments[0].installment is None

    async def test_same_batch_student_and_installment(self, ledger, mutations):
        change_set = ChangeSet.model_validate({
            "Students": [{"name": "Meera", "class": "6"}],
            "Fees": [{"name": "Meera", "total_fees": "20000"}],
            "Installments": [{"name": "Meera", "installment_amount": "5000"}],
        })
        result = await mutations.apply_change_set(change_set, actor="t")

        assert result.success
        stud_id = result.students[0].stud_id
        assert result.installments[0].stud_id == stud_id
        account = await ledger.get_fee_account(stud_id)
        assert account.balance == Decimal("15000")
        assert account.status == "Partial"

    async def test_recompute_failure_is_partial(self, ledger, mutations, monkeypatch):
        stud_id = await add_student(mutations, "Rahul")

        async def broken(*args, **kwargs):
            raise LedgerStoreError("sheet locked")

        monkeypatch.setattr(ledger, "update_fee_totals", broken)
        result = await mutations.apply_change_set(installment(stud_id, "100"), actor="t")

        assert not result.success
        assert len(result.recorded_installments) == 1
        assert "recorded but fee summary update failed" in result.installments[0].error
        assert len(await ledger.list_installments()) == 1
        logs = await ledger.list_logs()
        assert logs[-1].result == "partial"


class TestRecompute:
    async def test_recompute_is_idempotent(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")
        await mutations.apply_change_set(installment(stud_id, "4000"), actor="t")

        first = await mutations.recompute_fee_account(stud_id)
        second = await mutations.recompute_fee_account(stud_id)

        assert first.total_paid == second.total_paid == Decimal("4000")
        assert first.balance == second.balance == Decimal("36000")
        assert first.status == second.status == "Partial"

    async def test_recompute_repairs_drift(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")
        await mutations.apply_change_set(installment(stud_id, "4000"), actor="t")
        await ledger.update_fee_totals(stud_id, Decimal("1"), Decimal("1"), "Paid")

        account = await mutations.recompute_fee_account(stud_id)

        assert account.total_paid == Decimal("4000")
        assert account.balance == Decimal("36000")

    async def test_missing_account_raises(self, mutations):
        with pytest.raises(LedgerStoreError):
            await mutations.recompute_fee_account("STU404")


class TestLogs:
    async def test_seed_logs_follow_rows(self, ledger, mutations):
        stud_id = await add_student(mutations, "Rahul")
        change_set = installment(stud_id, "100")
        change_set.Logs = ChangeSet.model_validate({"Logs": [{"action": "add_installment"}]}).Logs

        result = await mutations.apply_change_set(change_set, actor="t", raw_message=f"{stud_id} paid 100")

        assert result.success
        logs = await ledger.list_logs()
        seed_log = logs[-1]
        assert seed_log.result == "success"
        assert seed_log.stud_id == stud_id
        assert seed_log.raw_message == f"{stud_id} paid 100"
        assert '"Installments"' in seed_log.parsed_json

    async def test_message_summary(self, mutations):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")
        result = await mutations.apply_change_set(installment(stud_id, "4000"), actor="t")

        message = result.to_message("₹")

        assert message.startswith("✅ *Data processed successfully!*")
        assert f"• ₹4000 for Rahul ({stud_id}) - Balance: ₹36000" in message
        assert "📊 The ledger has been updated." in message

    async def test_partial_summary(self, mutations):
        stud_id = await add_student(mutations, "Rahul")
        change_set = ChangeSet.model_validate({"Installments": [
            {"stud_id": stud_id, "installment_amount": "100"},
            {"stud_id": "STU404", "installment_amount": "100"},
        ]})
        result = await mutations.apply_change_set(change_set, actor="t")

        assert result.batch_result == "partial"
        message = result.to_message("₹")
        assert message.startswith("⚠️ *Request partially processed*")
        assert "• Student not found: STU404" in message


class TestIdAllocation:
    async def test_installment_ids_are_sequential(self, ledger):
        assert await ledger.allocate_id(INSTALLMENTS) == "INST001"
        assert await ledger.allocate_id(INSTALLMENTS) == "INST002"
