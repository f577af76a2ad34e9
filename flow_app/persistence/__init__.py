"""
Trade persistence backed by SQLite.
"""
