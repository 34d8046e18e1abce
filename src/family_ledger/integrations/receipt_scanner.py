"""Receipt scanning through an external vision model.

This module sends a receipt photo to the Gemini ``generateContent`` REST endpoint and parses the structured JSON
reply into suggested transaction fields. The result is only a suggestion for the client to review; nothing here
writes ledger data.

Features:
- Lazy shared HTTP client with a configurable timeout
- Accepts raw base64 or ``data:image/...;base64,`` URIs
- Transport, HTTP and parse failures surface as ``ExternalServiceError``
"""

import datetime as dt
import json
import re
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from pydantic import Field, ValidationError as PydanticValidationError, field_validator

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger
from family_ledger.models.ledger_models import CamelModel
from family_ledger.utils.error_handling import ExternalServiceError

logger = get_logger(prefix="[ReceiptScanner]")

DATA_URI_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")
RECEIPT_CATEGORIES = ("Groceries", "Dining", "Transport", "Bills", "Other")

RECEIPT_PROMPT = """
Analyze this receipt image and extract the transaction details.

For the amount, use the grand total. If the total is not visible, cut off or unclear, add up every visible line
item price and use that sum.

Extract:
1. Total amount (number only).
2. Merchant name.
3. Date in YYYY-MM-DD format; use today's date if none is printed.
4. Category, exactly one of: Groceries (supermarket, convenience store), Dining (restaurant, cafe, food),
   Transport (fuel, taxi, public transport), Bills (utilities, phone, internet), Other (anything else).
5. Summary: a short description of the items purchased.
"""

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "amount": {"type": "NUMBER", "description": "Total amount paid, or the sum of visible items"},
        "merchant": {"type": "STRING", "description": "Name of the store or merchant"},
        "date": {"type": "STRING", "description": "Transaction date in YYYY-MM-DD format"},
        "category": {"type": "STRING", "description": "One of: " + ", ".join(RECEIPT_CATEGORIES)},
        "summary": {"type": "STRING", "description": "Short description of the purchased items"},
    },
    "required": ["amount", "merchant", "date", "category"],
}


class ReceiptScanRequest(CamelModel):
    image: str = Field(..., min_length=1, description="Base64 image, optionally as a data URI")


class ReceiptData(CamelModel):
    amount: Decimal
    merchant: str
    date: Optional[dt.date] = None
    category: str
    summary: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def lenient_date(cls, v):
        # An unreadable date becomes None; the client falls back to today.
        if isinstance(v, str):
            try:
                return dt.date.fromisoformat(v.strip()[:10])
            except ValueError:
                return None
        return v


class ReceiptScanResponse(CamelModel):
    receipt: ReceiptData


def strip_data_uri(image: str) -> str:
    return DATA_URI_PREFIX.sub("", image.strip(), count=1)


class ReceiptScanner:
    """Client for the external receipt vision service.

    Attributes:
        base_url: API base URL
        model: Model name used for ``generateContent``
        timeout: Request timeout in seconds
    """

    def __init__(self):
        self.base_url = settings.RECEIPT_SCAN_BASE_URL.rstrip("/")
        self.model = settings.RECEIPT_SCAN_MODEL
        self.timeout = settings.RECEIPT_SCAN_TIMEOUT_SECONDS
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=httpx.Timeout(self.timeout))
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _api_key(self) -> Optional[str]:
        key = settings.RECEIPT_SCAN_API_KEY
        if key is None:
            return None
        return key.get_secret_value() or None

    def _build_payload(self, image_base64: str) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"inlineData": {"mimeType": "image/jpeg", "data": image_base64}},
                        {"text": RECEIPT_PROMPT},
                    ]
                }
            ],
            "generationConfig": {"responseMimeType": "application/json", "responseSchema": RESPONSE_SCHEMA},
        }

    async def scan(self, image_base64: str) -> ReceiptData:
        """Extract suggested transaction fields from a receipt photo.

        Args:
            image_base64: Base64 image data, with or without a data URI prefix

        Returns:
            Parsed receipt data

        Raises:
            ExternalServiceError: 503 when scanning is not configured, 502 when the service fails
        """
        api_key = self._api_key()
        if not settings.RECEIPT_SCAN_ENABLED or not api_key:
            raise ExternalServiceError(
                "Receipt scanning is not configured", "RECEIPT_SCAN_UNAVAILABLE", status_code=503
            )

        image = strip_data_uri(image_base64)
        if not image:
            raise ExternalServiceError("Receipt image is empty", "RECEIPT_SCAN_FAILED")

        try:
            response = await self.client.post(
                f"/models/{self.model}:generateContent",
                params={"key": api_key},
                json=self._build_payload(image),
            )
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.error("Receipt scan timed out after %ss", self.timeout)
            raise ExternalServiceError("Receipt scanning timed out", "RECEIPT_SCAN_FAILED") from e
        except httpx.HTTPStatusError as e:
            logger.error("Receipt scan failed with HTTP %s", e.response.status_code)
            raise ExternalServiceError("Receipt scanning service returned an error", "RECEIPT_SCAN_FAILED") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Receipt scan request failed: %s", e, exc_info=True)
            raise ExternalServiceError("Receipt scanning service is unreachable", "RECEIPT_SCAN_FAILED") from e

        return self._parse(body)

    def _parse(self, body: Dict[str, Any]) -> ReceiptData:
        try:
            text = body["candidates"][0]["content"]["parts"][0]["text"]
            data = ReceiptData.model_validate(json.loads(text))
        except (KeyError, IndexError, TypeError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.error("Could not parse receipt scan response: %s", e)
            raise ExternalServiceError("Receipt could not be read", "RECEIPT_SCAN_FAILED") from e
        logger.info("Receipt scanned: merchant=%s category=%s", data.merchant, data.category)
        return data


receipt_scanner = ReceiptScanner()
