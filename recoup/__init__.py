"""Recoup - accounts-receivable recovery engine."""
