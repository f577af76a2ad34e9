"""
Data ingestion and normalization module.

Decodes option contract identifiers, reconciles push-feed and pull-feed
payload shapes through an ordered alias table, and produces canonical
Trade records.
"""
