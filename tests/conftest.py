"""
Shared fixtures: an in-memory SQL ledger and recording fakes for the LLM,
WhatsApp, the payment gateway and receipt rendering.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, List, Optional

import pytest

from chat2sheet.ai.classifier import IntentClassifier
from chat2sheet.ai.confirmation import ConfirmationManager, ConfirmationStore
from chat2sheet.ai.llm_client import LLMError
from chat2sheet.ai.parser import StructuredParser
from chat2sheet.ai.read_parser import ReadRequestParser
from chat2sheet.core.db import DatabaseManager
from chat2sheet.schemas.changeset import ChangeSet, FeeSeed, StudentSeed
from chat2sheet.services.ledger_service import LedgerMutationService
from chat2sheet.services.message_pipeline import MessagePipeline
from chat2sheet.services.notification_service import NotificationService
from chat2sheet.services.payment_service import PaymentBridge, PaymentGatewayError
from chat2sheet.services.read_service import ReadService
from chat2sheet.services.sql_store import SQLLedgerStore
from chat2sheet.services.whatsapp_service import WhatsAppError

WEBHOOK_SECRET = "whsec_test"
KEY_SECRET = "key_secret_test"


class FakeLLM:
    """Returns queued answers in order; an Exception in the queue is raised"""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts: List[str] = []

    def queue(self, *answers):
        self.answers.extend(answers)

    async def complete(self, prompt, model, temperature=0.1, max_tokens=300):
        self.prompts.append(prompt)
        if not self.answers:
            raise LLMError("No answer queued")
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, dict):
            return json.dumps(answer)
        return answer


class FakeWhatsApp:
    def __init__(self):
        self.texts: List[tuple] = []
        self.documents: List[tuple] = []
        self.uploads: List[str] = []
        self.fail_for: Dict[str, WhatsAppError] = {}
        self.fail_uploads = False

    async def send_text(self, to, body):
        if to in self.fail_for:
            raise self.fail_for[to]
        self.texts.append((to, body))
        return {"messages": [{"id": "wamid.test"}]}

    async def upload_media(self, file_path, mime_type="application/pdf"):
        if self.fail_uploads:
            raise WhatsAppError("upload failed", status=500)
        self.uploads.append(file_path)
        return "media_1"

    async def send_document(self, to, media_id, caption="", filename=""):
        if to in self.fail_for:
            raise self.fail_for[to]
        self.documents.append((to, media_id, caption, filename))
        return {"messages": [{"id": "wamid.doc"}]}

    def texts_to(self, number) -> List[str]:
        return [body for to, body in self.texts if to == number]


class FakeInvoices:
    def __init__(self):
        self.generated: List[str] = []
        self.cleaned: List[str] = []

    async def generate_receipt(self, student, installment, account=None):
        path = f"/tmp/receipt_{installment.inst_id}.pdf"
        self.generated.append(path)
        return path

    def cleanup(self, file_path):
        if file_path:
            self.cleaned.append(file_path)


class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self, orders: Optional[Dict[str, Dict[str, Any]]] = None):
        self.orders = orders or {}
        self.created: List[Dict[str, Any]] = []

    async def create_order(self, amount_paise, receipt, notes):
        order = {"id": f"order_{len(self.created) + 1}", "amount": amount_paise, "currency": "INR", "notes": notes}
        self.created.append(order)
        return order

    async def fetch_order(self, order_id):
        if order_id not in self.orders:
            raise PaymentGatewayError(f"Order {order_id} not found")
        return self.orders[order_id]


def sign(secret: str, payload) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def captured_event(payment_id: str, amount_paise: int, stud_id: str = "", order_id: Optional[str] = None) -> bytes:
    entity = {
        "id": payment_id,
        "amount": amount_paise,
        "currency": "INR",
        "status": "captured",
        "notes": {"studid": stud_id} if stud_id else {},
    }
    if order_id:
        entity["order_id"] = order_id
    return json.dumps({"event": "payment.captured", "payload": {"payment": {"entity": entity}}}).encode("utf-8")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def ledger():
    manager = DatabaseManager("sqlite://", echo=False)
    store = SQLLedgerStore(manager)
    yield store
    manager.close()


@pytest.fixture
def mutations(ledger):
    return LedgerMutationService(ledger)


@pytest.fixture
def whatsapp():
    return FakeWhatsApp()


@pytest.fixture
def invoices():
    return FakeInvoices()


@pytest.fixture
def notifications(ledger, whatsapp, invoices):
    return NotificationService(ledger, whatsapp, invoices)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def bridge(ledger, mutations, notifications, gateway):
    return PaymentBridge(
        ledger=ledger,
        mutations=mutations,
        notifications=notifications,
        gateway=gateway,
        webhook_secret=WEBHOOK_SECRET,
        key_secret=KEY_SECRET,
    )


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def confirmation_store():
    return ConfirmationStore(ttl_minutes=0)


@pytest.fixture
def pipeline(ledger, llm, confirmation_store, mutations, notifications, whatsapp):
    return MessagePipeline(
        ledger=ledger,
        classifier=IntentClassifier(llm, confirmation_store, model="classifier"),
        parser=StructuredParser(llm, model="parser"),
        read_parser=ReadRequestParser(llm, model="reader"),
        read_service=ReadService(ledger),
        confirmations=ConfirmationManager(confirmation_store, ledger),
        mutations=mutations,
        notifications=notifications,
        whatsapp=whatsapp,
    )


async def add_student(
    mutations: LedgerMutationService,
    name: str,
    class_name: str = "10",
    total_fees: str = "40000",
    parent_no: str = "9876543210",
) -> str:
    """Create a student with an opening fee account and return the new id"""
    change_set = ChangeSet(
        Students=[StudentSeed(name=name, class_name=class_name, parent_name=f"{name} Sr", parent_no=parent_no)],
        Fees=[FeeSeed(name=name, class_name=class_name, total_fees=total_fees, balance=total_fees)],
    )
    result = await mutations.apply_change_set(change_set, actor="test")
    assert result.success, result
    return result.students[0].stud_id

