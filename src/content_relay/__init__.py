"""Event propagation and read-time enrichment for media services."""

__version__ = "0.1.0"
