from typing import Any, Dict, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from paygate.models import AuditLog, Entitlement, IpnEvent, Payment, PaymentStatus, utcnow


def _insert(session: Session, table):
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


class PaymentRepository:
    """Persistence operations used by the reconciliation engine.

    Every write commits immediately; payments are only ever changed through
    ``update_status_if`` so concurrent writers cannot lose each other's
    updates.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_token(self, token: str) -> Optional[Payment]:
        return (
            self.db.query(Payment)
            .filter_by(provider_token=token)
            .populate_existing()
            .first()
        )

    def get_by_id(self, payment_id: int) -> Optional[Payment]:
        return (
            self.db.query(Payment)
            .filter_by(id=payment_id)
            .populate_existing()
            .first()
        )

    def add_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def update_status_if(
        self, payment_id: int, expected: PaymentStatus, new: PaymentStatus
    ) -> bool:
        """Write ``new`` only if the row still holds ``expected``."""
        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == expected.value)
            .values(status=new.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def upsert_entitlements(self, uid: str, resources: Iterable[str], payment_id: int) -> None:
        rows = [
            {"uid": uid, "resource_id": resource, "source_payment_id": payment_id, "granted_at": utcnow()}
            for resource in resources
        ]
        if not rows:
            return
        stmt = _insert(self.db, Entitlement.__table__).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["uid", "resource_id"],
            set_={"source_payment_id": stmt.excluded.source_payment_id},
        )
        self.db.execute(stmt)
        self.db.commit()

    def add_audit(self, uid: Optional[str], action: str, meta: Dict[str, Any]) -> None:
        self.db.add(AuditLog(uid=uid, action=action, meta=meta))
        self.db.commit()

    def record_ipn_event(self, provider_ref: str, raw_payload: Dict[str, Any]) -> None:
        stmt = _insert(self.db, IpnEvent.__table__).values(
            provider_ref=provider_ref, raw_payload=raw_payload, processed_at=utcnow()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["provider_ref"],
            set_={"raw_payload": stmt.excluded.raw_payload, "processed_at": stmt.excluded.processed_at},
        )
        self.db.execute(stmt)
        self.db.commit()

    def list_donations(self):
        return (
            self.db.query(Payment)
            .filter(Payment.plan_id.like("DONATION\\_%", escape="\\"))
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .all()
        )

    def list_user_donations(self, uid: str):
        return (
            self.db.query(Payment)
            .filter(Payment.uid == uid, Payment.plan_id.like("DONATION\\_%", escape="\\"))
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .all()
        )

    def list_entitlements(self):
        return self.db.query(Entitlement).order_by(Entitlement.granted_at.asc(), Entitlement.id.asc()).all()
