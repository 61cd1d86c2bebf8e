"""Accounting business rules (VAT, accounts, amounts, bank matching)."""
