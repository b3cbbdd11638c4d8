import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from paygate.config import Settings

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"


class ProviderError(Exception):
    """PayDunya could not be reached or answered with something unusable."""


@dataclass(frozen=True)
class Invoice:
    token: str
    checkout_url: Optional[str]


class PaydunyaClient:
    """Synchronous wrapper around the PayDunya HTTP JSON API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self._transport = transport

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "PAYDUNYA-MASTER-KEY": self.settings.paydunya_master_key,
            "PAYDUNYA-PRIVATE-KEY": self.settings.paydunya_private_key,
            "PAYDUNYA-TOKEN": self.settings.paydunya_token,
        }

    def _request(self, method: str, endpoint: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.settings.api_base}/{endpoint}"
        try:
            with httpx.Client(
                timeout=self.settings.provider_timeout, transport=self._transport
            ) as client:
                response = client.request(method, url, headers=self.headers, json=json)
        except httpx.HTTPError as exc:
            logger.warning("PayDunya %s failed: %s", endpoint, exc)
            raise ProviderError(str(exc)) from exc

        try:
            data = response.json()
        except ValueError:
            data = None
        logger.debug("PayDunya %s -> %s %s", endpoint, response.status_code, str(data)[:300])

        if response.is_error:
            raise ProviderError(f"PayDunya {endpoint} returned HTTP {response.status_code}")
        if not isinstance(data, dict):
            raise ProviderError(f"PayDunya {endpoint} returned a non-object body")
        if str(data.get("response_code")) != SUCCESS_CODE:
            raise ProviderError(
                f"PayDunya error: {data.get('response_text') or 'Unknown error'}"
            )
        return data

    def create_invoice(
        self,
        plan_id: str,
        amount: int,
        description: str,
        callback_url: str,
        return_url: str,
        cancel_url: str,
    ) -> Invoice:
        payload = {
            "invoice": {
                "items": [{"name": description, "price": amount, "quantity": 1}],
                "total_amount": amount,
                "description": description,
                "return_url": return_url,
                "cancel_url": cancel_url,
                "custom_data": {"planId": plan_id},
            },
            "store": {"name": self.settings.merchant_name},
            "actions": {
                "callback_url": callback_url,
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        }
        logger.info("Creating PayDunya invoice plan=%s amount=%s", plan_id, amount)
        data = self._request("POST", "checkout-invoice/create", json=payload)
        token = data.get("token")
        if not token:
            raise ProviderError("PayDunya create invoice: missing token in success response")
        logger.info("PayDunya invoice created token=%s", token)
        return Invoice(token=str(token), checkout_url=data.get("response_text"))

    def confirm(self, token: str) -> Dict[str, Any]:
        """Fetch the raw invoice status payload for ``token``."""
        return self._request("GET", f"checkout-invoice/confirm/{token}")
