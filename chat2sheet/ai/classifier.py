# chat2sheet/ai/classifier.py
"""
Intent Classifier - maps a WhatsApp message to one operation

Replies from a sender with a pending confirmation never reach the LLM; they
are matched against the YES / NO word lists instead. Any LLM failure falls
back to READ so an outage can never trigger a write.
"""

import logging
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from chat2sheet.ai.confirmation import ConfirmationStore, interpret_reply
from chat2sheet.ai.llm_client import LLMClient, extract_balanced_json
from chat2sheet.ai.prompts import build_classifier_prompt
from chat2sheet.core.config import settings

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Operations a message can be classified as"""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    REMIND_ALL = "REMIND_ALL"
    REMIND_SPECIFIC = "REMIND_SPECIFIC"
    CONFIRMATION_YES = "CONFIRMATION_YES"
    CONFIRMATION_NO = "CONFIRMATION_NO"
    CONFIRMATION_INVALID = "CONFIRMATION_INVALID"


LLM_OPERATIONS = {
    Operation.CREATE,
    Operation.READ,
    Operation.UPDATE,
    Operation.DELETE,
    Operation.REMIND_ALL,
    Operation.REMIND_SPECIFIC,
}

WRITE_OPERATIONS = {Operation.CREATE, Operation.UPDATE, Operation.DELETE}

CONFIRMATION_OPERATIONS = {
    Operation.CONFIRMATION_YES,
    Operation.CONFIRMATION_NO,
    Operation.CONFIRMATION_INVALID,
}


class Classification(BaseModel):
    operation: Operation
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    student_id: Optional[str] = None

    @property
    def is_write(self) -> bool:
        return self.operation in WRITE_OPERATIONS

    @property
    def is_confirmation(self) -> bool:
        return self.operation in CONFIRMATION_OPERATIONS


SAFE_DEFAULT = Classification(operation=Operation.READ, confidence=0.5)


class IntentClassifier:
    """Classifies messages, bypassing the LLM while a confirmation is pending"""

    def __init__(self, llm: LLMClient, confirmations: ConfirmationStore, model: Optional[str] = None):
        self.llm = llm
        self.confirmations = confirmations
        self.model = model or settings.LLM_CLASSIFIER_MODEL

    async def classify(self, text: str, sender_id: str) -> Classification:
        if self.confirmations.has_pending(sender_id):
            return self._classify_reply(text)

        try:
            answer = await self.llm.complete(
                build_classifier_prompt(text),
                model=self.model,
                temperature=0.1,
                max_tokens=200,
            )
            parsed = extract_balanced_json(answer)
            classification = self._from_llm(parsed)
            logger.info(
                f"🎯 Classification: {classification.operation.value} ({classification.confidence:.2f})"
                + (f" student {classification.student_id}" if classification.student_id else "")
            )
            return classification

        except Exception as e:
            logger.warning(f"Classification failed, defaulting to READ: {e}")
            return SAFE_DEFAULT.model_copy()

    @staticmethod
    def _classify_reply(text: str) -> Classification:
        answer = interpret_reply(text)
        if answer is True:
            operation = Operation.CONFIRMATION_YES
        elif answer is False:
            operation = Operation.CONFIRMATION_NO
        else:
            operation = Operation.CONFIRMATION_INVALID
        logger.info(f"🎯 Pending confirmation reply classified as {operation.value}")
        return Classification(operation=operation, confidence=1.0)

    @staticmethod
    def _from_llm(parsed: dict) -> Classification:
        raw_operation = str(parsed.get("operation", "")).strip().upper()
        try:
            operation = Operation(raw_operation)
        except ValueError:
            raise ValueError(f"Unknown operation from LLM: {raw_operation!r}")
        if operation not in LLM_OPERATIONS:
            raise ValueError(f"LLM returned a reserved operation: {raw_operation}")

        confidence = parsed.get("confidence", 0.5)
        try:
            confidence = min(max(float(confidence), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.5

        student_id = parsed.get("student_id")
        if student_id in (None, "", "null", "None"):
            student_id = None
        else:
            student_id = str(student_id).strip().upper()

        return Classification(operation=operation, confidence=confidence, student_id=student_id)
