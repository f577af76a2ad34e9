"""
Utility functions module.

Time Semantics:
- Trade timestamps from the provider are ALWAYS authoritative
- Processing (wall-clock) time is only used when a payload carries no timestamp
- Buckets are keyed by UTC minute; DTE is computed on the UTC trade date
"""
