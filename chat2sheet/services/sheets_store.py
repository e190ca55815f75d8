# chat2sheet/services/sheets_store.py - Google Sheets ledger backend (values API over httpx)
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import logging

import httpx
from google.auth import default as google_auth_default
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from chat2sheet.core.config import settings
from chat2sheet.schemas.ledger import (
    FEES, ID_PREFIXES, RECORD_TYPES,
    FeeAccountRecord, LedgerRecord,
    amount_cell, column_letter, format_id, parse_id_number,
)
from chat2sheet.services.ledger_store import LedgerStore, LedgerStoreError

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

TokenProvider = Callable[[], Awaitable[str]]


def _build_creds(key_path: Optional[str]):
    if key_path:
        return service_account.Credentials.from_service_account_file(key_path, scopes=SHEETS_SCOPES)
    creds, _ = google_auth_default(scopes=SHEETS_SCOPES)
    return creds


class GoogleTokenProvider:
    """Access tokens from a service account file or application default credentials"""

    def __init__(self, key_path: Optional[str] = None):
        self.key_path = key_path
        self._creds = None
        self._lock = asyncio.Lock()

    async def __call__(self) -> str:
        async with self._lock:
            if self._creds is None:
                self._creds = await asyncio.to_thread(_build_creds, self.key_path)
            if not self._creds.valid:
                # google-auth refresh is blocking
                await asyncio.to_thread(self._creds.refresh, GoogleAuthRequest())
            return self._creds.token


class SheetsLedgerStore(LedgerStore):
    """
    Ledger rows in a Google spreadsheet, one sheet per collection.

    Row 1 of each sheet is a header. Ids are allocated under a per-collection
    asyncio.Lock from the larger of the sheet's highest id and the last id this
    process issued, so concurrent tasks in one process never collide.
    """

    backend_name = "sheets"

    def __init__(
        self,
        spreadsheet_id: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        client: Optional[httpx.AsyncClient] = None,
        sheet_names: Optional[Dict[str, str]] = None,
    ):
        self.spreadsheet_id = spreadsheet_id or settings.SPREADSHEET_ID
        if not self.spreadsheet_id:
            raise LedgerStoreError("SPREADSHEET_ID is not configured")

        self.token_provider = token_provider or GoogleTokenProvider(settings.GOOGLE_CREDENTIALS_FILE)
        self.client = client or httpx.AsyncClient(timeout=settings.SHEETS_TIMEOUT_SECONDS)
        self.sheet_names = sheet_names or settings.sheet_names()
        self.base_url = f"{settings.SHEETS_API_URL.rstrip('/')}/spreadsheets/{self.spreadsheet_id}/values"

        self._locks: Dict[str, asyncio.Lock] = {}
        self._high_water: Dict[str, int] = {}

        logger.info(f"SheetsLedgerStore initialized for spreadsheet {self.spreadsheet_id}")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _range(self, collection: str, columns: Optional[str] = None) -> str:
        if collection not in RECORD_TYPES:
            raise LedgerStoreError(f"Unknown collection: {collection}")
        sheet = self.sheet_names[collection]
        if columns is None:
            columns = f"A:{column_letter(len(RECORD_TYPES[collection].COLUMNS))}"
        return f"{sheet}!{columns}"

    async def _request(self, method: str, a1_range: str, suffix: str = "", **kwargs) -> Dict[str, Any]:
        token = await self.token_provider()
        url = f"{self.base_url}/{a1_range}{suffix}"
        try:
            response = await self.client.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs
            )
            response.raise_for_status()
            return response.json() if response.content else {}

        except httpx.HTTPStatusError as e:
            logger.error(f"Sheets API error {e.response.status_code} on {method} {a1_range}: {e.response.text[:200]}")
            raise LedgerStoreError(f"Sheets API error: {e.response.status_code}") from e

        except httpx.TimeoutException as e:
            logger.error(f"Sheets request timed out: {method} {a1_range}")
            raise LedgerStoreError("Request to Google Sheets timed out") from e

        except httpx.HTTPError as e:
            logger.error(f"Sheets request failed: {e}")
            raise LedgerStoreError(f"Sheets request failed: {e}") from e

    async def _get_values(self, a1_range: str) -> List[List[Any]]:
        data = await self._request(
            "GET",
            a1_range,
            params={"valueRenderOption": "UNFORMATTED_VALUE"},
        )
        return data.get("values", [])

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def allocate_id(self, collection: str) -> str:
        prefix = ID_PREFIXES.get(collection)
        if prefix is None:
            raise LedgerStoreError(f"Collection {collection} has no generated ids")

        lock = self._locks.setdefault(collection, asyncio.Lock())
        async with lock:
            rows = await self._get_values(self._range(collection, "A:A"))
            numbers = [parse_id_number(prefix, row[0]) for row in rows[1:] if row]
            highest = max([n for n in numbers if n is not None], default=0)
            number = max(highest, self._high_water.get(collection, 0)) + 1
            self._high_water[collection] = number

        return format_id(prefix, number)

    async def append(self, collection: str, record: LedgerRecord) -> LedgerRecord:
        await self._request(
            "POST",
            self._range(collection),
            ":append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [record.to_row()]},
        )
        logger.debug(f"Appended row to {self.sheet_names[collection]}")
        return record

    async def read_all(self, collection: str) -> List[LedgerRecord]:
        record_type = RECORD_TYPES.get(collection)
        if record_type is None:
            raise LedgerStoreError(f"Unknown collection: {collection}")

        rows = await self._get_values(self._range(collection))
        records = []
        for row in rows[1:]:
            if not row or not any(str(cell).strip() for cell in row):
                continue
            try:
                records.append(record_type.from_row(row))
            except ValueError as e:
                logger.warning(f"Skipping malformed {collection} row {row!r}: {e}")
        return records

    async def update_fee_totals(
        self,
        stud_id: str,
        total_paid: Decimal,
        balance: Decimal,
        status: str,
    ) -> FeeAccountRecord:
        rows = await self._get_values(self._range(FEES))
        wanted = stud_id.strip().upper()

        for index, row in enumerate(rows[1:], start=2):
            if row and str(row[0]).strip().upper() == wanted:
                sheet_row = index
                existing = FeeAccountRecord.from_row(row)
                break
        else:
            raise LedgerStoreError(f"No fee account for {stud_id}")

        target = f"{self.sheet_names[FEES]}!E{sheet_row}:G{sheet_row}"
        await self._request(
            "PUT",
            target,
            params={"valueInputOption": "RAW"},
            json={
                "range": target,
                "majorDimension": "ROWS",
                "values": [[amount_cell(total_paid), amount_cell(balance), status]],
            },
        )
        logger.info(f"Updated fee summary row {sheet_row} for {stud_id}")

        return existing.model_copy(update={
            "total_paid": total_paid,
            "balance": balance,
            "status": status,
        })

    async def health_check(self):
        try:
            await self._get_values(self._range(FEES, "A1:G1"))
            return {"status": "healthy", "backend": self.backend_name}
        except LedgerStoreError as e:
            return {"status": "unhealthy", "backend": self.backend_name, "error": str(e)}

    async def close(self) -> None:
        await self.client.aclose()
