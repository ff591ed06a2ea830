"""Spare-parts stock ledger for a maintenance management system."""

__version__ = "0.1.0"
