"""
Price series parsing, schemas, and CSV/JSON I/O.

Parses newline-delimited JSON price bars, defines the PriceBar contract,
and centralizes reads/writes of ledgers, valuations, and metrics.
"""
