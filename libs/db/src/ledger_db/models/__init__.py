"""Shared SQLAlchemy models registry for the ledger database.

Currently includes the imported-record table written by ``kakeibo_import``.
"""

from .ledger import Base, ImportedRecord

__all__ = [
    "Base",
    "ImportedRecord",
]
