"""
Demo data for Cost Ledger.
"""
