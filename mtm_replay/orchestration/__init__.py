"""
End-to-end report pipeline.

Ties a parsed backtest report, an optional price series, metrics, and the
replay engine together, including the ledger-only fallback.
"""
