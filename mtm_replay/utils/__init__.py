"""
Generic utility functions shared across modules.

Includes logging setup and timestamp parsing helpers.
"""
