"""ledger_db: shared database library (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata`` for schema creation
- ORM models in ``ledger_db.models.ledger`` (re-exported for convenience)
- Engine/session helpers in ``ledger_db.client``
"""

from __future__ import annotations

from .models.ledger import Base, ImportedRecord

metadata = Base.metadata

__all__ = [
    "Base",
    "ImportedRecord",
    "metadata",
]
