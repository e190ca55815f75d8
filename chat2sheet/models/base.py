# chat2sheet/models/base.py - Declarative base for ledger tables
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
