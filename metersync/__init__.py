"""MeterSync - offline-first sync for meter replacement field data."""

__version__ = "1.0.0"
