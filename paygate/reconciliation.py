"""Reconciliation of payment status reports.

Three sources can claim a payment's status: the provider's IPN push, a
confirm query we issue ourselves, and what is already stored. Both entry
points below funnel through ``_apply``, which merges against the freshly
read row and writes with a compare-and-set, re-reading on a lost race.
Entitlements are granted through an idempotent upsert, so duplicate or
concurrent runs leave the same state as a single one.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from paygate.config import Settings
from paygate.entitlements import EntitlementGranter
from paygate.merge import merge_status
from paygate.models import Payment, PaymentStatus
from paygate.normalizer import Expectation, Normalized, normalize
from paygate.notifications import InvalidNotification, parse_notification, reference_token
from paygate.paydunya_client import PaydunyaClient, ProviderError
from paygate.repository import PaymentRepository
from paygate.signature import SignatureVerifier

logger = logging.getLogger(__name__)

PROVIDER = "paydunya"

GRANTED = "ENTITLEMENTS_GRANTED"
GRANTED_FALLBACK = "ENTITLEMENTS_GRANTED_FALLBACK"
GRANTED_VERIFY_PASS = "ENTITLEMENTS_GRANTED_VERIFY_PASS"
MISMATCH = "PAYMENT_MISMATCH"
FORCE_COMPLETED = "PAYMENT_FORCE_COMPLETED"

# Outcomes of the push protocol
INVALID_SIGNATURE = "invalid_signature"
INVALID_PAYLOAD = "invalid_payload"
UNKNOWN_REFERENCE = "unknown_reference"
PROCESSED = "processed"


class PaymentNotFound(LookupError):
    pass


class StatusConflict(RuntimeError):
    """The row kept changing underneath us; should not happen with a monotone status."""


@dataclass(frozen=True)
class NotificationResult:
    outcome: str
    token: Optional[str] = None
    status: Optional[PaymentStatus] = None
    payment_id: Optional[int] = None

    @property
    def accepted(self):
        return self.outcome in (PROCESSED, UNKNOWN_REFERENCE)


class ReconciliationEngine:
    # Status can change at most twice (PENDING -> FAILED -> COMPLETED).
    MAX_ATTEMPTS = 4

    def __init__(
        self,
        repository: PaymentRepository,
        settings: Settings,
        client: Optional[PaydunyaClient] = None,
        verifier: Optional[SignatureVerifier] = None,
    ):
        self.repository = repository
        self.settings = settings
        self.client = client or PaydunyaClient(settings)
        self.verifier = verifier or SignatureVerifier(settings.paydunya_private_key)
        self.granter = EntitlementGranter(repository)

    # -- push -------------------------------------------------------------

    def handle_notification(
        self, body: bytes, signature: Optional[str], content_type: Optional[str] = None
    ) -> NotificationResult:
        if not self.verifier.verify(body, signature):
            return NotificationResult(INVALID_SIGNATURE)

        try:
            payload = parse_notification(body, content_type)
        except InvalidNotification as exc:
            logger.warning("PayDunya IPN: undecodable body: %s", exc)
            return NotificationResult(INVALID_PAYLOAD)

        token = reference_token(payload)
        if not token:
            logger.warning("PayDunya IPN: no reference token in payload")
            return NotificationResult(INVALID_PAYLOAD)

        payment = self.repository.get_by_token(token)
        if payment is None:
            logger.warning("PayDunya IPN for unknown token=%s, ignored", token)
            return NotificationResult(UNKNOWN_REFERENCE, token=token)

        self.repository.record_ipn_event(token, payload)

        normalized = normalize(payload, Expectation(payment.amount, payment.currency))
        self._audit_mismatch(payment, normalized, where="ipn")

        status, changed = self._apply(payment, normalized.status)
        if status is PaymentStatus.COMPLETED:
            self._grant(payment, GRANTED if changed else None, via="ipn")

        logger.info(
            "PayDunya IPN processed token=%s incoming=%s status=%s changed=%s",
            token, normalized.status.value, status.value, changed,
        )
        return NotificationResult(PROCESSED, token=token, status=status, payment_id=payment.id)

    # -- pull -------------------------------------------------------------

    def confirm_status(self, token: str) -> Optional[PaymentStatus]:
        """Return the best known status for ``token``, or None if nobody knows it."""
        payment = self.repository.get_by_token(token)

        if payment is None:
            payload = self._confirm(token)
            if payload is None:
                return None
            # nothing local to update
            return normalize(payload).status

        current = payment.payment_status
        if current.is_terminal:
            if current is PaymentStatus.COMPLETED:
                self._grant(payment, GRANTED_VERIFY_PASS, via="status_verify")
            return current

        payload = self._confirm(token)
        if payload is None:
            return current

        normalized = normalize(payload, Expectation(payment.amount, payment.currency))
        self._audit_mismatch(payment, normalized, where="confirm")

        status, changed = self._apply(payment, normalized.status)
        if status is PaymentStatus.COMPLETED:
            self._grant(payment, GRANTED_FALLBACK if changed else None, via="status_confirm")
        return status

    # -- admin ------------------------------------------------------------

    def force_complete(self, token: str, plan_id: str, admin_uid: Optional[str] = None) -> Payment:
        payment = self.repository.get_by_token(token)
        if payment is None:
            raise PaymentNotFound(token)

        status, changed = self._apply(payment, PaymentStatus.COMPLETED)
        self.granter.grant(payment.uid, payment.id, (plan_id,))
        self.repository.add_audit(
            payment.uid,
            FORCE_COMPLETED,
            {"token": token, "planId": plan_id, "paymentId": payment.id, "by": admin_uid, "changed": changed},
        )
        logger.warning("Payment token=%s force-completed by %s", token, admin_uid)
        return self.repository.get_by_id(payment.id)

    # -- internals --------------------------------------------------------

    def _apply(self, payment: Payment, incoming: PaymentStatus) -> Tuple[PaymentStatus, bool]:
        """Merge ``incoming`` into the row; return (resulting status, whether we wrote it)."""
        payment_id = payment.id
        for _ in range(self.MAX_ATTEMPTS):
            current = payment.payment_status
            merged = merge_status(current, incoming)
            if merged == current:
                return current, False
            if self.repository.update_status_if(payment_id, current, merged):
                return merged, True
            logger.info("Concurrent status update on payment=%s, re-reading", payment_id)
            payment = self.repository.get_by_id(payment_id)
        raise StatusConflict(f"payment {payment_id} did not settle after {self.MAX_ATTEMPTS} attempts")

    def _confirm(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.confirm(token)
        except ProviderError as exc:
            logger.warning("PayDunya confirm unavailable for token=%s: %s", token, exc)
            return None

    def _grant(self, payment: Payment, audit_action: Optional[str], via: str) -> None:
        resources = self.granter.grant(
            payment.uid, payment.id, self.settings.resources_for(payment.plan_id)
        )
        if audit_action and resources:
            self.repository.add_audit(
                payment.uid,
                audit_action,
                {"resources": list(resources), "paymentId": payment.id, "via": via},
            )

    def _audit_mismatch(self, payment: Payment, normalized: Normalized, where: str) -> None:
        if normalized.mismatch is None:
            return
        meta = {"provider": PROVIDER, "token": payment.provider_token, "where": where}
        meta.update(normalized.mismatch.as_meta())
        self.repository.add_audit(payment.uid, MISMATCH, meta)
