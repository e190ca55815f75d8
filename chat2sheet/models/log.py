# chat2sheet/models/log.py - Log_details audit rows (append-only)
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from chat2sheet.models.base import Base


class LogEntry(Base):
    __tablename__ = "logs"

    log_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    stud_id: Mapped[str] = mapped_column(String(16), default="")
    raw_message: Mapped[str] = mapped_column(Text, default="")
    parsed_json: Mapped[str] = mapped_column(Text, default="")
    result: Mapped[str] = mapped_column(String(16), nullable=False)  # success|fail|partial|pending
    error_msg: Mapped[str] = mapped_column(Text, default="")
    performed_by: Mapped[str] = mapped_column(String(64), default="")

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
