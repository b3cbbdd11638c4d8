import logging
import re
import time
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from paygate.auth import ANONYMOUS_PREFIX, authenticated_uid, payer_uid, require_admin
from paygate.config import Settings, get_settings
from paygate.database import SessionLocal
from paygate.models import Payment, PaymentStatus
from paygate.paydunya_client import PaydunyaClient, ProviderError
from paygate.reconciliation import (
    INVALID_SIGNATURE,
    PaymentNotFound,
    ReconciliationEngine,
)
from paygate.repository import PaymentRepository
from paygate.signature import extract_signature

logger = logging.getLogger(__name__)

router = APIRouter()

DONATION_LABELS = {
    "quete": "Quête dominicale",
    "denier": "Denier du culte",
    "cierge": "Cierge pascal",
    "messe": "Messe",
}

ANONYMOUS_UID = re.compile(r"^anonymous_[a-f0-9]{16,32}$")


class DonationRequest(BaseModel):
    donationType: Literal["quete", "denier", "cierge", "messe"]
    amount: int = Field(..., ge=100, le=100_000_000)
    description: Optional[str] = Field(None, max_length=500)
    parishId: Optional[str] = Field(None, min_length=1, max_length=200)


class ForceCompleteRequest(BaseModel):
    token: str = Field(..., min_length=10, max_length=200)
    planId: Literal["BOOK_PART_2", "BOOK_PART_3"]


def build_engine(db, settings: Settings) -> ReconciliationEngine:
    return ReconciliationEngine(PaymentRepository(db), settings, client=PaydunyaClient(settings))


@router.post("/paydunya/donation/checkout", status_code=201)
def donation_checkout(
    request: DonationRequest,
    uid: str = Depends(payer_uid),
    authenticated: Optional[str] = Depends(authenticated_uid),
    settings: Settings = Depends(get_settings),
):
    plan_id = f"DONATION_{request.donationType.upper()}_{int(time.time() * 1000)}"
    description = request.description or f"Don {request.donationType}"

    try:
        invoice = PaydunyaClient(settings).create_invoice(
            plan_id=plan_id,
            amount=request.amount,
            description=description,
            callback_url=f"{settings.base_url}/paydunya/ipn",
            return_url=f"{settings.base_url}/payment/return?token={{token}}",
            cancel_url=f"{settings.base_url}/payment/cancel",
        )
    except ProviderError as exc:
        logger.error("Donation checkout failed: %s", exc)
        raise HTTPException(status_code=502, detail="Payment provider unavailable")

    db = SessionLocal()
    try:
        repository = PaymentRepository(db)
        payment = repository.add_payment(
            Payment(
                uid=uid,
                plan_id=plan_id,
                provider="paydunya",
                provider_token=invoice.token,
                status=PaymentStatus.PENDING.value,
                amount=request.amount,
                currency="XOF",
            )
        )
        repository.add_audit(
            uid,
            "DONATION_CREATED",
            {
                "planId": plan_id,
                "donationType": request.donationType,
                "amount": request.amount,
                "parishId": request.parishId,
                "providerToken": invoice.token,
                "isAnonymous": authenticated is None,
            },
        )
        payment_id = payment.id
    finally:
        db.close()

    return {
        "paymentId": payment_id,
        "token": invoice.token,
        "checkout_url": invoice.checkout_url,
        "amount": request.amount,
        "donationType": request.donationType,
        "planId": plan_id,
    }


def reconcile_notification(settings: Settings, payload: bytes, signature, content_type):
    db = SessionLocal()
    try:
        return build_engine(db, settings).handle_notification(payload, signature, content_type)
    finally:
        db.close()


@router.post("/paydunya/ipn")
async def paydunya_ipn(request: Request, settings: Settings = Depends(get_settings)):
    # signature checks run on these exact bytes
    payload = await request.body()
    signature = extract_signature(request.headers)

    result = await run_in_threadpool(
        reconcile_notification, settings, payload, signature, request.headers.get("content-type")
    )

    if result.outcome == INVALID_SIGNATURE:
        raise HTTPException(status_code=400, detail="Invalid signature")
    if not result.accepted:
        raise HTTPException(status_code=400, detail="Invalid payload")

    body = {"ok": True, "result": result.outcome}
    if result.status is not None:
        body["status"] = result.status.value
    return body


@router.get("/paydunya/status")
def payment_status(
    token: str = Query(..., min_length=10, max_length=200),
    settings: Settings = Depends(get_settings),
):
    db = SessionLocal()
    try:
        status = build_engine(db, settings).confirm_status(token)
    finally:
        db.close()

    if status is None:
        return JSONResponse({"status": "UNKNOWN"}, status_code=404)
    return {"status": status.value}


@router.post("/paydunya/force-complete")
def force_complete(
    request: ForceCompleteRequest,
    admin_uid: str = Depends(require_admin),
    settings: Settings = Depends(get_settings),
):
    db = SessionLocal()
    try:
        build_engine(db, settings).force_complete(request.token, request.planId, admin_uid)
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")
    finally:
        db.close()

    return {"success": True, "message": "Payment completed and entitlement granted"}


@router.get("/admin/payments")
def admin_payments(admin_uid: str = Depends(require_admin)):
    db = SessionLocal()
    try:
        donations = [p.to_dict() for p in PaymentRepository(db).list_donations()]
    finally:
        db.close()
    return {"payments": donations, "total": len(donations)}


@router.get("/admin/entitlements")
def admin_entitlements(admin_uid: str = Depends(require_admin)):
    db = SessionLocal()
    try:
        entitlements = [e.to_dict() for e in PaymentRepository(db).list_entitlements()]
    finally:
        db.close()
    return {"entitlements": entitlements, "total": len(entitlements)}


def donation_type(plan_id: str) -> str:
    """DONATION_QUETE_1767844133206 -> quete"""
    parts = plan_id.split("_")
    if plan_id.startswith("DONATION_") and len(parts) >= 2:
        return parts[1].lower()
    return "autre"


@router.get("/donations/history")
def donations_history(
    anonymousUid: Optional[str] = Query(None),
    x_anonymous_uid: Optional[str] = Header(None),
    uid: Optional[str] = Depends(authenticated_uid),
):
    if uid is None:
        candidate = x_anonymous_uid or anonymousUid
        if candidate and ANONYMOUS_UID.match(candidate):
            uid = candidate
        elif candidate and candidate.startswith(ANONYMOUS_PREFIX):
            raise HTTPException(status_code=400, detail="Invalid anonymous UID format")
    if uid is None:
        raise HTTPException(status_code=401, detail="User ID required")

    db = SessionLocal()
    try:
        payments = PaymentRepository(db).list_user_donations(uid)
        donations = []
        for payment in payments:
            kind = donation_type(payment.plan_id)
            row = payment.to_dict()
            donations.append({
                "id": str(payment.id),
                "paymentId": payment.id,
                "type": DONATION_LABELS.get(kind, "Don"),
                "donationType": kind,
                "amount": payment.amount,
                "currency": payment.currency or "XOF",
                "status": payment.status.lower(),
                "date": row["createdAt"],
                "createdAt": row["createdAt"],
                "updatedAt": row["updatedAt"],
                "provider": payment.provider,
                "providerToken": payment.provider_token,
            })
    finally:
        db.close()

    completed = [d for d in donations if d["status"] == "completed"]
    completed_amount = sum(d["amount"] for d in completed)
    return {
        "donations": donations,
        "statistics": {
            "totalAmount": completed_amount,
            "completedAmount": completed_amount,
            "totalCount": len(donations),
            "completedCount": len(completed),
            "pendingCount": len([d for d in donations if d["status"] == "pending"]),
            "failedCount": len([d for d in donations if d["status"] == "failed"]),
        },
        "uid": uid,
    }
