"""State/store layer.

This package is the single source of truth for how deltas arriving from the
push channel and the polling fallback are merged into one convergent
per-session snapshot.
"""
