# chat2sheet/ai/parser.py
"""
Structured Parser - turns a write request into a ChangeSet via the LLM

The answer is cut from the first "{" to the last "}" and validated into a
ChangeSet with every array present. Any failure yields a ChangeSet holding a
single parse_error log row, so the caller always has an audit trail.
"""

import logging
from typing import Optional

from chat2sheet.ai.llm_client import LLMClient, extract_outer_json
from chat2sheet.ai.prompts import build_parser_prompt
from chat2sheet.core.config import settings
from chat2sheet.schemas.changeset import ChangeSet

logger = logging.getLogger(__name__)


class StructuredParser:
    def __init__(self, llm: LLMClient, model: Optional[str] = None):
        self.llm = llm
        self.model = model or settings.LLM_PARSER_MODEL

    async def parse(self, text: str) -> ChangeSet:
        try:
            answer = await self.llm.complete(
                build_parser_prompt(text),
                model=self.model,
                temperature=0,
                max_tokens=1000,
            )
            change_set = ChangeSet.model_validate(extract_outer_json(answer))
            logger.info(
                f"🤖 Parsed change set: {len(change_set.Students)} student(s), "
                f"{len(change_set.Installments)} installment(s)"
            )
            return change_set

        except Exception as e:
            logger.error(f"❌ AI parsing error: {e}")
            return ChangeSet.parse_failure(text, str(e))
