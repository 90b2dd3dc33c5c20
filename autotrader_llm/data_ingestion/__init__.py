"""Market data and per-cycle price snapshots"""
