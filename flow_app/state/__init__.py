"""
Backfill run state machine.

Models a single non-overlapping backfill run as IDLE → FETCHING(ticker, page)
→ IDLE. A trigger that arrives while a run is FETCHING is a no-op.
"""
