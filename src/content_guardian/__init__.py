"""Content ingestion, change detection, and compliance ticketing pipeline."""

__version__ = "0.1.0"
