"""
mtm_replay – mark-to-market replay of MetaTrader strategy-tester reports.

Turns a scraped trade ledger and a historical price series into a per-bar
valuation series (position, average entry price, floating and closed P&L)
and a ledger-only metrics summary.
"""
