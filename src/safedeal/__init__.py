"""SafeDeal: safe transactions and buyer/seller messaging over a polling API."""

__version__ = "0.1.0"
