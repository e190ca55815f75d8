# chat2sheet/ai/__init__.py
"""
AI Module
Contains the LLM client, intent classifier, parsers and the confirmation state machine
"""
