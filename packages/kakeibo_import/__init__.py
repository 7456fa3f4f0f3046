"""kakeibo_import: household-ledger export import and classification.

Entry points live in :mod:`kakeibo_import.api` (``import_text``,
``detect_format``) and :mod:`kakeibo_import.cli` (the ``kakeibo-import``
console script).
"""
