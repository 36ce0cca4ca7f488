import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from lingobridge.utils.exceptions import PaymentError
from lingobridge.utils.logger.custom_logging import LoggerMixin


class PaymentResult(BaseModel):
    payment_id: Optional[str] = None
    success: bool = False
    error: Optional[str] = None


class PaymentGateway(ABC):
    """Charges a workspace's stored payment method."""

    @abstractmethod
    async def charge(self, workspace_id: str, amount: Decimal, currency: str, idempotency_key: str) -> PaymentResult:
        """Declines come back as PaymentResult(success=False); transport failures raise PaymentError."""

    async def close(self) -> None:
        pass


class HttpPaymentGateway(PaymentGateway, LoggerMixin):
    """
    JSON payment API client.

    POST {base_url}/charges with {"workspace_id", "amount", "currency"} and an
    Idempotency-Key header; expects {"id": ..., "status": "succeeded" | ...}.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 15.0):
        LoggerMixin.__init__(self)
        if not base_url:
            raise ValueError("Payment API URL is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers: Dict[str, str] = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, headers=headers)
        return self._client

    async def charge(self, workspace_id: str, amount: Decimal, currency: str, idempotency_key: str) -> PaymentResult:
        client = await self._get_client()
        try:
            response = await client.post(
                "/charges",
                json={"workspace_id": workspace_id, "amount": str(amount), "currency": currency},
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            raise PaymentError(f"Payment API unreachable: {e}") from e

        if response.status_code in (402, 422):
            body = self._json_body(response)
            detail = body.get("error") if body else None
            detail = detail or response.text or response.reason_phrase
            self.logger.warning(f"[PAYMENT] Charge declined for {workspace_id}: {detail}")
            return PaymentResult(success=False, error=str(detail))
        if response.status_code >= 400:
            raise PaymentError(f"Payment API returned HTTP {response.status_code}")

        data = self._json_body(response)
        if data is None:
            raise PaymentError(f"Payment API returned an unreadable body with HTTP {response.status_code}")
        if data.get("status") != "succeeded":
            return PaymentResult(payment_id=data.get("id"), success=False, error=data.get("error") or data.get("status"))
        return PaymentResult(payment_id=data.get("id") or uuid.uuid4().hex, success=True)

    @staticmethod
    def _json_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
        """The response's JSON object, None when the body is not one."""
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
