"""
Trade ledger entities and normalization of scraped report rows.

Converts the text rows produced by the report scraper into immutable Trade
objects, skipping malformed rows with a recorded reason.
"""
