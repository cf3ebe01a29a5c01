"""
Configuration loading for Cost Ledger.
"""
