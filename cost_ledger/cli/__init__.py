"""
Command-line interface for Cost Ledger.
"""
