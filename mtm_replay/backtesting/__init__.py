"""
Position model and replay engine.

Walks a sorted trade ledger and a sorted price series in lockstep to
produce one mark-to-market valuation record per price bar.
"""
