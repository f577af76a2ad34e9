"""
Flow App - Options Flow Ingestion Pipeline

Ingests options trade events from a low-latency push feed and a periodic
paginated pull feed, normalizes them into canonical trades, classifies
significant flow and maintains minute-bucket aggregates for timeline,
heatmap and strike concentration queries.
"""

__version__ = "0.1.0"
__author__ = "Natural Flow Team"
