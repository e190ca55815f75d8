# chat2sheet/ai/read_parser.py
"""
Read-request parser

Asks the LLM for {query_type, parameters, output_format}. Empty input, call
failures, invalid JSON or an unknown query type fall back to a regex reading
of the message.
"""

import logging
import re
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from chat2sheet.ai.llm_client import LLMClient, extract_outer_json
from chat2sheet.ai.prompts import build_read_prompt
from chat2sheet.core.config import settings

logger = logging.getLogger(__name__)


QUERY_TYPES = (
    "student_search",
    "fee_status",
    "payment_history",
    "student_details",
    "class_report",
    "aggregate_summary",
)

CLASS_PATTERN = re.compile(r"class\s+(\d+[a-z]?)|students\s+in\s+class\s+(\d+[a-z]?)", re.IGNORECASE)
AGGREGATE_KEYWORDS = re.compile(r"total|count|all students|how many|list of students|who", re.IGNORECASE)
FEE_KEYWORDS = re.compile(r"fee|paid|balance|outstanding|pending|due", re.IGNORECASE)
STUDENT_ID_PATTERN = re.compile(r"STU\d+", re.IGNORECASE)
AMOUNT_PATTERN = re.compile(r"(\d+)")


class ReadRequest(BaseModel):
    query_type: str = "student_search"
    parameters: Dict[str, Any] = Field(default_factory=dict)
    output_format: str = "summary"
    fallback: bool = False

    def param(self, key: str) -> str:
        value = self.parameters.get(key)
        return "" if value is None else str(value).strip()


def fallback_read_request(text: str) -> ReadRequest:
    """Deterministic reading of a query when the LLM answer is unusable"""
    text = text or ""
    parameters: Dict[str, Any] = {"stud_id": "", "name": "", "class": "", "criteria": "", "amount": ""}
    query_type = "student_search"
    output_format = "summary"

    # Class queries are checked before aggregates
    class_match = CLASS_PATTERN.search(text)
    amount_match = AMOUNT_PATTERN.search(text)
    stud_id_match = STUDENT_ID_PATTERN.search(text)
    lowered = text.lower()

    if class_match:
        query_type = "class_report"
        output_format = "list"
        parameters["class"] = class_match.group(1) or class_match.group(2)

    elif AGGREGATE_KEYWORDS.search(text) and FEE_KEYWORDS.search(text):
        query_type = "aggregate_summary"
        if "less than" in lowered and amount_match:
            parameters["criteria"] = f"paid_less_than_{amount_match.group(1)}"
            parameters["amount"] = amount_match.group(1)
        elif "more than" in lowered and amount_match:
            parameters["criteria"] = f"balance_more_than_{amount_match.group(1)}"
            parameters["amount"] = amount_match.group(1)
        elif "outstanding" in lowered or "pending" in lowered:
            parameters["criteria"] = "outstanding_fees"

    elif stud_id_match:
        query_type = "student_details"
        output_format = "detailed"
        parameters["stud_id"] = stud_id_match.group(0).upper()

    return ReadRequest(
        query_type=query_type,
        parameters=parameters,
        output_format=output_format,
        fallback=True,
    )


class ReadRequestParser:
    def __init__(self, llm: LLMClient, model: Optional[str] = None):
        self.llm = llm
        self.model = model or settings.LLM_READ_MODEL

    async def parse(self, text: str) -> ReadRequest:
        if not text or not text.strip():
            logger.info("Empty read query, using fallback")
            return fallback_read_request("")

        try:
            answer = await self.llm.complete(
                build_read_prompt(text),
                model=self.model,
                temperature=0.1,
                max_tokens=300,
            )
            parsed = extract_outer_json(answer)
        except Exception as e:
            logger.warning(f"❌ Read AI parsing error, using fallback: {e}")
            return fallback_read_request(text)

        query_type = parsed.get("query_type")
        if query_type not in QUERY_TYPES:
            logger.warning(f"❌ Invalid query type returned: {query_type}")
            return fallback_read_request(text)

        parameters = parsed.get("parameters")
        if not isinstance(parameters, dict):
            parameters = {"stud_id": "", "name": "", "class": ""}
        if parameters.get("stud_id"):
            parameters["stud_id"] = str(parameters["stud_id"]).strip().upper()

        return ReadRequest(
            query_type=query_type,
            parameters=parameters,
            output_format=str(parsed.get("output_format") or "summary"),
        )
