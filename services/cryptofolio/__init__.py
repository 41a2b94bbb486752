"""Crypto portfolio tracker: transaction ledger, live quotes, positions and P&L."""

__version__ = "1.0.0"
