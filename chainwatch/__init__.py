"""Transaction resilience layer for multi-chain transfers."""

__version__ = "0.1.0"
