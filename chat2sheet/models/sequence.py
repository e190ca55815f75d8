# chat2sheet/models/sequence.py - Per-collection id counters
from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column
from chat2sheet.models.base import Base


class IdSequence(Base):
    """Last issued number for a collection ("students" -> 7 means STU007 was issued)"""
    __tablename__ = "id_sequences"

    collection: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
