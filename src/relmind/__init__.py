"""relmind: turn notes about people into a versioned knowledge store."""

__version__ = "0.1.0"
