"""Seat membership state store and billing-count domain logic."""

__version__ = "0.1.0"
