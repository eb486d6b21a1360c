"""
Test fixtures for deterministic testing.

This module provides:
- batches: poller rows/batches in wire format and a one-call ingest helper
"""

from .batches import ingest, make_batch, make_row

__all__ = ["ingest", "make_batch", "make_row"]
