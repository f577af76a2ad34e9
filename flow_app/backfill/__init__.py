"""
Pull-feed backfill: paginated trade fetches and the run coordinator.
"""
