"""
Storage layer for Cost Ledger.

SQLite-backed persistence for cost records and the latest rate snapshot.
"""
