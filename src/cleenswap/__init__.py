"""CleenSwap - wallet assets and CLEEN token exchange."""

__version__ = "0.1.0"
