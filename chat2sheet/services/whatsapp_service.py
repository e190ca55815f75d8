# chat2sheet/services/whatsapp_service.py - Delivery adapter for the WhatsApp Cloud API
import aiohttp
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from chat2sheet.core.config import settings
from chat2sheet.core.security import mask_sensitive_data

logger = logging.getLogger(__name__)

# Recipient is not in the business account's allowed list
NOT_ALLOWED_RECIPIENT = 131030


class WhatsAppError(Exception):
    """Raised when the Cloud API rejects a request or cannot be reached"""

    def __init__(self, message: str, code: Optional[int] = None, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status

    @property
    def not_allowed_recipient(self) -> bool:
        return self.code == NOT_ALLOWED_RECIPIENT


class WhatsAppService:
    """Sends text messages and documents through the Graph API"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.access_token = access_token or settings.WHATSAPP_ACCESS_TOKEN
        self.phone_number_id = phone_number_id or settings.WHATSAPP_PHONE_NUMBER_ID
        self.base_url = (base_url or settings.whatsapp_base_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.WHATSAPP_TIMEOUT)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def send_text(self, to: str, body: str) -> Dict[str, Any]:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        result = await self._post("messages", json=payload)
        logger.info(f"📤 Message sent to {mask_sensitive_data(to)}")
        return result

    async def upload_media(self, file_path: str, mime_type: str = "application/pdf") -> str:
        """Upload a local file and return its media id"""
        path = Path(file_path)
        form = aiohttp.FormData()
        form.add_field("messaging_product", "whatsapp")
        form.add_field("type", mime_type)
        form.add_field("file", path.read_bytes(), filename=path.name, content_type=mime_type)

        result = await self._post("media", data=form)
        media_id = result.get("id")
        if not media_id:
            raise WhatsAppError("Media upload returned no id")
        logger.info(f"📎 Uploaded {path.name} as media {media_id}")
        return media_id

    async def send_document(self, to: str, media_id: str, caption: str = "", filename: str = "") -> Dict[str, Any]:
        document = {"id": media_id}
        if caption:
            document["caption"] = caption
        if filename:
            document["filename"] = filename

        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "document",
            "document": document,
        }
        result = await self._post("messages", json=payload)
        logger.info(f"📄 Document {filename or media_id} sent to {mask_sensitive_data(to)}")
        return result

    async def _post(self, path: str, json: Optional[Dict[str, Any]] = None, data: Any = None) -> Dict[str, Any]:
        if not self.access_token or not self.phone_number_id:
            raise WhatsAppError("WhatsApp credentials are not configured")

        url = f"{self.base_url}/{self.phone_number_id}/{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, json=json, data=data, headers=self.headers) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = {"raw": await response.text()}

                    if response.status >= 400:
                        error = body.get("error", {}) if isinstance(body, dict) else {}
                        message = error.get("message") or f"WhatsApp API error {response.status}"
                        logger.error(f"❌ WhatsApp API {response.status}: {message}")
                        raise WhatsAppError(message, code=error.get("code"), status=response.status)
                    return body if isinstance(body, dict) else {}

        except asyncio.TimeoutError:
            logger.error(f"WhatsApp request timeout after {self.timeout.total}s")
            raise WhatsAppError("WhatsApp request timed out")

        except aiohttp.ClientError as e:
            logger.error(f"WhatsApp client error: {type(e).__name__}: {e}")
            raise WhatsAppError(f"WhatsApp request failed: {e}")


# Global singleton
_whatsapp_service: Optional[WhatsAppService] = None


def get_whatsapp_service() -> WhatsAppService:
    """Get or create WhatsApp service singleton"""
    global _whatsapp_service
    if _whatsapp_service is None:
        _whatsapp_service = WhatsAppService()
    return _whatsapp_service
