"""Payment-proof workflow models.

MemberPayment = a recorded fee payment (written when a proof is verified).
PaymentUploadLog = one row per submitted proof file.
PaymentAuditLog = insert-only trail of every payment status transition.
ConsumedActionToken = redeemed one-time action tokens, keyed by jti.

Audit rows carry ``member_id`` without a foreign key so the trail outlives
the member it describes.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bspcp.models.base import Base, UTCDateTime, make_append_only, utcnow


class MemberPayment(Base):
    __tablename__ = "member_payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    fee_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    proof_path: Mapped[str | None] = mapped_column(String(500))
    verified_by: Mapped[int | None] = mapped_column(ForeignKey("admins.id", ondelete="SET NULL"))
    notes: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<MemberPayment {self.fee_type} {self.amount} member={self.member_id}>"


class PaymentUploadLog(Base):
    __tablename__ = "payment_upload_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class PaymentAuditLog(Base):
    __tablename__ = "payment_audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)  # admin, member, token, system
    actor_id: Mapped[int | None] = mapped_column()
    old_status: Mapped[str | None] = mapped_column(String(30))
    new_status: Mapped[str] = mapped_column(String(30), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_payment_audit_member_created", "member_id", "created_at"),)


class ConsumedActionToken(Base):
    __tablename__ = "consumed_action_tokens"

    jti: Mapped[str] = mapped_column(String(64), primary_key=True)
    purpose: Mapped[str] = mapped_column(String(50), nullable=False)
    subject_id: Mapped[int] = mapped_column(nullable=False)
    consumed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


make_append_only(PaymentAuditLog)
make_append_only(PaymentUploadLog)
