"""
Push-feed frame handling.
"""
