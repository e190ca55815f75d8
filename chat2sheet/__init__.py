# chat2sheet/__init__.py
"""
Chat2Sheet
WhatsApp assistant that keeps a school fee ledger in Google Sheets or SQL
"""

__version__ = "1.0.0"
