# chat2sheet/models/fee.py - Totalfee_details rows, one per student
from __future__ import annotations
from decimal import Decimal
from sqlalchemy import String, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from chat2sheet.models.base import Base


class FeeAccount(Base):
    __tablename__ = "fee_accounts"

    stud_id: Mapped[str] = mapped_column(String(16), ForeignKey("students.stud_id"), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), default="")
    class_name: Mapped[str] = mapped_column("class", String(32), default="")
    total_fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="unpaid")  # unpaid|Pending|Partial|Paid

    __table_args__ = (
        CheckConstraint("total_fees >= 0", name="ck_fee_total_positive"),
    )
