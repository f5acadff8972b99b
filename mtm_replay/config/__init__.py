"""
Configuration loading and validation for replay settings.

Provides a strongly typed settings object for the valuation constants
(contract size, conversion fallback, tolerances, starting balance).
"""
