"""
Derived trade metrics.

Significance classification, strike concentration grading and sentiment
signals computed over canonical trades and aggregate buckets.
"""
