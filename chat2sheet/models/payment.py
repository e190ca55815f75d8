# chat2sheet/models/payment.py - Installment_details rows (immutable once written)
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from chat2sheet.models.base import Base


class Installment(Base):
    __tablename__ = "installments"

    inst_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    stud_id: Mapped[str] = mapped_column(String(16), ForeignKey("students.stud_id"), nullable=False)
    name: Mapped[str] = mapped_column(String(128), default="")
    class_name: Mapped[str] = mapped_column("class", String(32), default="")
    installment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    date: Mapped[str] = mapped_column(String(32), default="")
    mode: Mapped[str] = mapped_column(String(32), default="cash")
    remarks: Mapped[str] = mapped_column(String(255), default="")
    recorded_by: Mapped[str] = mapped_column(String(64), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("installment_amount > 0", name="ck_installment_amount_positive"),
        Index("ix_installments_stud_id", "stud_id"),
    )
