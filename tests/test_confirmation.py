"""Tests for the confirmation state machine and its preview"""

from datetime import datetime, timedelta, timezone

from chat2sheet.ai.confirmation import (
    ConfirmationManager, ConfirmationState, ConfirmationStore, PendingConfirmation, interpret_reply,
)
from chat2sheet.schemas.changeset import ChangeSet

from conftest import add_student

SENDER = "919000000001"


def _installment(stud_id="STU001", amount="4000"):
    return ChangeSet.model_validate({"Installments": [{"stud_id": stud_id, "installment_amount": amount}]})


class TestInterpretReply:
    def test_yes_words(self):
        for word in ("yes", "Y", "confirm", "OK", "proceed"):
            assert interpret_reply(word) is True

    def test_no_words(self):
        for word in ("no", "N", "cancel", "stop", "abort"):
            assert interpret_reply(word) is False

    def test_anything_else(self):
        assert interpret_reply("yes please") is None
        assert interpret_reply("") is None
        assert interpret_reply(None) is None


class TestConfirmationManager:
    async def test_request_then_yes(self, ledger, confirmation_store):
        manager = ConfirmationManager(confirmation_store, ledger)
        change_set = _installment()

        request = await manager.request(SENDER, change_set, "CREATE", raw_message="STU001 paid 4000")

        assert request.confirmation_id.startswith("CONF_")
        assert manager.state_for(SENDER) == ConfirmationState.AWAITING_CONFIRMATION

        result = manager.resolve(SENDER, "yes")
        assert result.state == ConfirmationState.CONFIRMED
        assert result.confirmed
        assert result.data == change_set
        assert result.raw_message == "STU001 paid 4000"
        assert manager.state_for(SENDER) == ConfirmationState.NONE

    async def test_no_cancels_and_clears(self, ledger, confirmation_store):
        manager = ConfirmationManager(confirmation_store, ledger)
        await manager.request(SENDER, _installment(), "CREATE")

        result = manager.resolve(SENDER, "No")

        assert result.state == ConfirmationState.CANCELLED
        assert not result.confirmed
        assert not result.error
        assert "cancelled" in result.message.lower()
        assert len(confirmation_store) == 0

    async def test_invalid_reply_keeps_pending(self, ledger, confirmation_store):
        manager = ConfirmationManager(confirmation_store, ledger)
        await manager.request(SENDER, _installment(), "CREATE")

        result = manager.resolve(SENDER, "what?")

        assert result.error
        assert result.state == ConfirmationState.AWAITING_CONFIRMATION
        assert confirmation_store.has_pending(SENDER)

    def test_resolve_without_pending(self, ledger, confirmation_store):
        manager = ConfirmationManager(confirmation_store, ledger)
        result = manager.resolve(SENDER, "yes")
        assert result.error
        assert result.state == ConfirmationState.NONE

    async def test_new_request_replaces_previous(self, ledger, confirmation_store):
        manager = ConfirmationManager(confirmation_store, ledger)
        await manager.request(SENDER, _installment(amount="100"), "CREATE")
        await manager.request(SENDER, _installment(amount="200"), "CREATE")

        result = manager.resolve(SENDER, "yes")

        assert len(confirmation_store) == 0
        assert result.data.Installments[0].installment_amount == "200"

    async def test_preview_shows_live_balances(self, ledger, mutations, confirmation_store):
        stud_id = await add_student(mutations, "Rahul", total_fees="40000")
        manager = ConfirmationManager(confirmation_store, ledger)

        request = await manager.request(SENDER, _installment(stud_id, "4000"), "CREATE")

        assert f"Rahul ({stud_id})" in request.message
        assert "Amount: ₹4000" in request.message
        assert "Current Balance: ₹40000" in request.message
        assert "New Balance: ₹36000" in request.message
        assert "Reply *YES*" in request.message

    async def test_preview_for_unknown_student(self, ledger, confirmation_store):
        manager = ConfirmationManager(confirmation_store, ledger)
        request = await manager.request(SENDER, _installment("STU404", "500"), "CREATE")
        assert "Student: STU404" in request.message
        assert "Current Balance" not in request.message


class TestConfirmationStore:
    def test_expired_entries_are_dropped(self, ledger):
        now = [datetime(2025, 8, 22, 10, 0, tzinfo=timezone.utc)]
        store = ConfirmationStore(ttl_minutes=10, clock=lambda: now[0])
        manager = ConfirmationManager(store, ledger)
        store.set(SENDER, pending_for(store))

        now[0] += timedelta(minutes=11)

        assert not store.has_pending(SENDER)
        assert manager.resolve(SENDER, "yes").state == ConfirmationState.NONE

    def test_zero_ttl_never_expires(self):
        now = [datetime(2025, 8, 22, 10, 0, tzinfo=timezone.utc)]
        store = ConfirmationStore(ttl_minutes=0, clock=lambda: now[0])
        store.set(SENDER, pending_for(store))

        now[0] += timedelta(days=3)

        assert store.has_pending(SENDER)


def pending_for(store):
    return PendingConfirmation(id="CONF_x", data=_installment(), operation="CREATE", timestamp=store.now())
