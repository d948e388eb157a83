"""Ingestion layer.

This package contains adapters that fetch aircraft batches from ADS-B
aggregators and write normalized records into the state store.
"""

__all__: list[str] = []
