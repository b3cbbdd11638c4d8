"""Map PayDunya status vocabulary onto PaymentStatus.

Provider statuses are free text ("completed", "cancelled", "pending", ...)
and may sit at the top level of a payload or under its ``invoice`` object.
Anything unrecognised is PENDING, never COMPLETED.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from paygate.models import PaymentStatus

logger = logging.getLogger(__name__)

COMPLETED_EXACT = {"PAID", "SUCCESS", "COMPLETED"}


@dataclass(frozen=True)
class Expectation:
    amount: int
    currency: str


@dataclass(frozen=True)
class Mismatch:
    expected_amount: int
    received_amount: Optional[Decimal]
    expected_currency: str
    received_currency: Optional[str]

    def as_meta(self):
        received = self.received_amount
        if received is not None and received == received.to_integral_value():
            received = int(received)
        elif received is not None:
            received = float(received)
        return {
            "expectedAmount": self.expected_amount,
            "receivedAmount": received,
            "expectedCurrency": self.expected_currency,
            "receivedCurrency": self.received_currency,
        }


@dataclass(frozen=True)
class Normalized:
    status: PaymentStatus
    mismatch: Optional[Mismatch] = None


def _invoice(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    invoice = payload.get("invoice")
    return invoice if isinstance(invoice, Mapping) else {}


def raw_status(payload: Mapping[str, Any]) -> str:
    top = payload.get("status")
    nested = _invoice(payload).get("status")
    top = top if isinstance(top, str) else ""
    nested = nested if isinstance(nested, str) else ""
    return (top or nested).strip().upper()


def classify(text: str) -> PaymentStatus:
    text = (text or "").strip().upper()
    if "COMPLETE" in text or text in COMPLETED_EXACT:
        return PaymentStatus.COMPLETED
    if "CANCEL" in text or "FAIL" in text:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def _is_amount(value: Any) -> bool:
    return isinstance(value, (int, float, str)) and not isinstance(value, bool)


def _parse_amount(value: Any) -> Optional[Decimal]:
    if not _is_amount(value):
        return None
    text = str(value).strip()
    if not text:
        # a blank amount reads as zero, which never matches a real payment
        return Decimal(0)
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def reported_amount(payload: Mapping[str, Any]) -> Optional[Decimal]:
    nested = _invoice(payload).get("total_amount")
    if _is_amount(nested):
        return _parse_amount(nested)
    return _parse_amount(payload.get("amount"))


def reported_currency(payload: Mapping[str, Any]) -> Optional[str]:
    for value in (_invoice(payload).get("currency"), payload.get("currency")):
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
    return None


def normalize(payload: Mapping[str, Any], expect: Optional[Expectation] = None) -> Normalized:
    """Classify a provider payload, guarding COMPLETED against tampered proceeds.

    A COMPLETED report whose amount, or currency when both sides know it,
    differs from ``expect`` is downgraded to PENDING and the mismatch is
    returned for the caller to audit. A missing or non-numeric amount is not
    a mismatch; a nested ``total_amount`` that is not a number or string
    falls back to the top-level ``amount``.
    """
    status = classify(raw_status(payload))
    if status is not PaymentStatus.COMPLETED or expect is None:
        return Normalized(status)

    received_amount = reported_amount(payload)
    received_currency = reported_currency(payload)
    expected_currency = (expect.currency or "").upper()

    amount_ok = received_amount is None or received_amount == expect.amount
    currency_ok = (
        received_currency is None
        or not expected_currency
        or received_currency == expected_currency
    )
    if amount_ok and currency_ok:
        return Normalized(status)

    mismatch = Mismatch(
        expected_amount=expect.amount,
        received_amount=received_amount,
        expected_currency=expected_currency,
        received_currency=received_currency,
    )
    logger.error("PayDunya amount/currency mismatch: %s", mismatch.as_meta())
    return Normalized(PaymentStatus.PENDING, mismatch)
