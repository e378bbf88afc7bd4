"""Caching read-through proxy for the Bitget spot market-data API."""

__version__ = "1.0.0"
