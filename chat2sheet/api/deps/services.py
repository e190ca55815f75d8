# chat2sheet/api/deps/services.py - Service providers for the routers
"""
FastAPI dependencies that wire the services together.

Long-lived objects (ledger store, payment bridge) are module singletons;
tests replace any provider through ``app.dependency_overrides``.
"""

from fastapi import Depends, Header, HTTPException, status
from typing import Callable, Optional
import logging

from chat2sheet.ai.classifier import IntentClassifier
from chat2sheet.ai.confirmation import ConfirmationManager, get_confirmation_store
from chat2sheet.ai.llm_client import get_llm_client
from chat2sheet.ai.parser import StructuredParser
from chat2sheet.ai.read_parser import ReadRequestParser
from chat2sheet.core.config import settings
from chat2sheet.core.security import security_utils
from chat2sheet.services.invoice_service import get_invoice_service
from chat2sheet.services.ledger_service import LedgerMutationService
from chat2sheet.services.ledger_store import LedgerStore
from chat2sheet.services.message_pipeline import MessagePipeline
from chat2sheet.services.notification_service import NotificationService
from chat2sheet.services.payment_service import PaymentBridge, RazorpayClient
from chat2sheet.services.read_service import ReadService
from chat2sheet.services.whatsapp_service import WhatsAppService, get_whatsapp_service

logger = logging.getLogger(__name__)


def build_ledger_store(backend: Optional[str] = None) -> LedgerStore:
    """Create the configured ledger backend"""
    backend = (backend or settings.LEDGER_BACKEND).lower()
    if backend == "sql":
        from chat2sheet.services.sql_store import SQLLedgerStore
        return SQLLedgerStore()

    from chat2sheet.services.sheets_store import SheetsLedgerStore
    return SheetsLedgerStore()


_ledger_store: Optional[LedgerStore] = None
_payment_bridge: Optional[PaymentBridge] = None


def get_ledger_store() -> LedgerStore:
    global _ledger_store
    if _ledger_store is None:
        _ledger_store = build_ledger_store()
        logger.info(f"Ledger backend: {_ledger_store.backend_name}")
    return _ledger_store


async def close_ledger_store():
    global _ledger_store
    if _ledger_store is not None:
        await _ledger_store.close()
        _ledger_store = None


def get_whatsapp() -> WhatsAppService:
    return get_whatsapp_service()


def get_mutation_service(ledger: LedgerStore = Depends(get_ledger_store)) -> LedgerMutationService:
    return LedgerMutationService(ledger)


def get_notification_service(
    ledger: LedgerStore = Depends(get_ledger_store),
    whatsapp: WhatsAppService = Depends(get_whatsapp),
) -> NotificationService:
    return NotificationService(ledger, whatsapp, get_invoice_service())


def get_payment_bridge() -> PaymentBridge:
    """Shared bridge so in-flight payment ids are visible to every request"""
    global _payment_bridge
    if _payment_bridge is None:
        ledger = get_ledger_store()
        _payment_bridge = PaymentBridge(
            ledger=ledger,
            mutations=LedgerMutationService(ledger),
            notifications=NotificationService(ledger, get_whatsapp_service(), get_invoice_service()),
            gateway=RazorpayClient(),
        )
    return _payment_bridge


def build_message_pipeline() -> MessagePipeline:
    ledger = get_ledger_store()
    whatsapp = get_whatsapp_service()
    llm = get_llm_client()
    store = get_confirmation_store()
    return MessagePipeline(
        ledger=ledger,
        classifier=IntentClassifier(llm, store),
        parser=StructuredParser(llm),
        read_parser=ReadRequestParser(llm),
        read_service=ReadService(ledger),
        confirmations=ConfirmationManager(store, ledger),
        mutations=LedgerMutationService(ledger),
        notifications=NotificationService(ledger, whatsapp, get_invoice_service()),
        whatsapp=whatsapp,
    )


def get_pipeline_provider() -> Callable[[], MessagePipeline]:
    """Pipeline factory; the webhook calls it inside its own error handling"""
    return build_message_pipeline


def get_bridge_provider() -> Callable[[], PaymentBridge]:
    return get_payment_bridge


def require_admin_key(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")):
    """Guard for the admin ledger routes"""
    if not security_utils.verify_api_key(settings.ADMIN_API_KEY, x_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing API key",
        )
