import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from paygate.database import Base


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self):
        return self is not PaymentStatus.PENDING


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(128), nullable=False, index=True)     # authenticated or anonymous_*
    plan_id = Column(String(64), nullable=False)               # BOOK_PART_2 | DONATION_<TYPE>_<ms> | ...
    provider = Column(String(32), nullable=False, default="paydunya")
    provider_token = Column(String(128), nullable=False, unique=True, index=True)
    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value)
    amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="XOF")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def payment_status(self):
        return PaymentStatus(self.status)

    def to_dict(self):
        return {
            "id": self.id,
            "uid": self.uid,
            "planId": self.plan_id,
            "provider": self.provider,
            "providerToken": self.provider_token,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class Entitlement(Base):
    __tablename__ = "entitlements"
    __table_args__ = (UniqueConstraint("uid", "resource_id", name="uq_entitlements_uid_resource"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(128), nullable=False)
    resource_id = Column(String(64), nullable=False)
    granted_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=True)
    source_payment_id = Column(Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "uid": self.uid,
            "resourceId": self.resource_id,
            "grantedAt": self.granted_at.isoformat() if self.granted_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "sourcePaymentId": self.source_payment_id,
        }


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(128), nullable=True)
    action = Column(String(64), nullable=False, index=True)
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)


class IpnEvent(Base):
    __tablename__ = "ipn_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_ref = Column(String(128), nullable=False, unique=True)
    raw_payload = Column(JSON, nullable=False)
    processed_at = Column(DateTime, default=utcnow)
