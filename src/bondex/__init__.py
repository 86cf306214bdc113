"""bondex - bonding-curve trade execution engine."""

__version__ = "0.1.0"
