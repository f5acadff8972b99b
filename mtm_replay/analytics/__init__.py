"""
Ledger-only performance metrics and presentation helpers.

Computes win rate, drawdown, and profit factor over the trade ledger, plus
filters used by tables and charts.
"""
