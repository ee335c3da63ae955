"""
Database package for Paytm Bridge.

Exports database initialization, models, and the transaction store.
"""
from .init_db import initialize_database, create_engine_for, create_session_factory
from .models import Base, TransactionModel
from .store import TransactionStore

__all__ = [
    "initialize_database",
    "create_engine_for",
    "create_session_factory",
    "Base",
    "TransactionModel",
    "TransactionStore",
]
