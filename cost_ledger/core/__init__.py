"""
Core modules for Cost Ledger.

This package contains currency normalization, conversion arithmetic,
and report aggregation.
"""
