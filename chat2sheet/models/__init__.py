# chat2sheet/models/__init__.py - Import all models so SQLAlchemy can discover them

from chat2sheet.models.base import Base

from chat2sheet.models.student import Student
from chat2sheet.models.fee import FeeAccount
from chat2sheet.models.payment import Installment
from chat2sheet.models.log import LogEntry
from chat2sheet.models.sequence import IdSequence

__all__ = [
    "Base",
    "Student",
    "FeeAccount",
    "Installment",
    "LogEntry",
    "IdSequence",
]
