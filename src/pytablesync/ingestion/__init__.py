"""Ingestion layer.

This package contains the transport boundary: it validates rows fetched by
polling and messages received from the push channel, and emits normalized
deltas and snapshots. Nothing past this boundary sees raw payloads.
"""

__all__: list[str] = []
