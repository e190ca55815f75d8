# chat2sheet/models/student.py - Student_info rows
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from chat2sheet.models.base import Base


class Student(Base):
    __tablename__ = "students"

    stud_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    class_name: Mapped[str] = mapped_column("class", String(32), nullable=False, default="")
    parent_name: Mapped[str] = mapped_column(String(128), default="")
    parent_no: Mapped[str] = mapped_column(String(32), default="")
    phone_no: Mapped[str] = mapped_column(String(32), default="")
    email: Mapped[str] = mapped_column(String(128), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
