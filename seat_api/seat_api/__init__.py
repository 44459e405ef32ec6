"""HTTP service for seat membership management and ledger synchronisation."""

__version__ = "0.1.0"
