"""
WhatsApp message store.

HTTP service persisting message history, user profiles and webhook
ingestion in a relational store.
"""

__version__ = "1.0.0"
