"""
LLM Client
Handles communication with an OpenAI-compatible chat completions API (Groq)
and extraction of the JSON object the prompts ask for
"""

import httpx
import json
import logging
import re
from typing import Any, Dict, Optional

from chat2sheet.core.config import settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when the completion API is unreachable or returns no usable text"""
    pass


# ============================================================================
# Helper Functions
# ============================================================================

def strip_code_fences(text: str) -> str:
    """Remove markdown code blocks around a JSON answer"""
    text = re.sub(r'```json\s*', '', text)
    text = re.sub(r'```\s*', '', text)
    return text.strip()


def extract_balanced_json(text: str) -> Dict[str, Any]:
    """
    Parse the first balanced {...} object in a model answer.

    Braces inside JSON strings are ignored while scanning.

    Raises:
        ValueError: no complete object found or it is not valid JSON
    """
    text = strip_code_fences(text or "")
    start = text.find("{")
    if start == -1:
        raise ValueError("No JSON object in response")

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                parsed = json.loads(text[start:index + 1])
                if not isinstance(parsed, dict):
                    raise ValueError("Response JSON is not an object")
                return parsed

    raise ValueError("Unbalanced JSON object in response")


def extract_outer_json(text: str) -> Dict[str, Any]:
    """
    Parse the substring between the first "{" and the last "}".

    Raises:
        ValueError: no braces found or the substring is not a JSON object
    """
    text = strip_code_fences(text or "")
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object in response")
    parsed = json.loads(text[start:end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed


# ============================================================================
# LLM Client
# ============================================================================

class LLMClient:
    """
    Client for an OpenAI-compatible chat completions endpoint.
    One user message in, the assistant's text out.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize LLM client

        Args:
            base_url: API base URL, e.g. https://api.groq.com/openai/v1
            api_key: Bearer token for the API
            timeout: Request timeout in seconds
            client: Pre-built httpx client (tests pass one with a MockTransport)
        """
        self.base_url = (base_url or settings.LLM_API_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self.completions_url = f"{self.base_url}/chat/completions"
        self._client = client

    async def complete(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 300,
    ) -> str:
        """
        Send one prompt and return the assistant text

        Raises:
            LLMError: on transport errors, non-2xx responses or an empty answer
        """
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            if self._client is not None:
                response = await self._client.post(self.completions_url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.completions_url, json=payload, headers=headers, timeout=self.timeout)

            response.raise_for_status()
            result = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error calling LLM: {e}")
            raise LLMError(f"LLM API error: {e.response.status_code}") from e

        except httpx.TimeoutException as e:
            logger.error("LLM request timed out")
            raise LLMError("Request to LLM timed out") from e

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"LLM request failed: {e}")
            raise LLMError(f"LLM request failed: {e}") from e

        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("LLM response has no message content") from e

        if not content or not content.strip():
            raise LLMError("LLM returned an empty answer")

        content = content.strip()
        logger.debug(f"🔍 Raw LLM response ({model}): {content}")
        return content

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()


# ============================================================================
# Singleton Instance
# ============================================================================

_llm_client_instance: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create the LLM client (singleton pattern)"""
    global _llm_client_instance

    if _llm_client_instance is None:
        _llm_client_instance = LLMClient()
        logger.info(f"Created LLM client for {_llm_client_instance.base_url}")

    return _llm_client_instance
