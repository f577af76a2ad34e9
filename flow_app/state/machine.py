"""
Backfill state machine.

Guards a backfill run so two runs never overlap and records every phase
change through the standard state transition log.
"""

import threading
import uuid
from typing import Optional

from ..errors import StateTransitionError
from ..logging.config import get_backfill_logger, log_state_transition
from ..utils.time import utc_now
from .models import BackfillPhase, BackfillRunState

state_logger = get_backfill_logger(__name__)


class BackfillStateMachine:
    """
    IDLE → FETCHING(ticker, page) → IDLE, one run at a time.

    The guard is a non-blocking lock acquire: ``begin`` returns None instead
    of waiting when a run is already in progress.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = BackfillRunState()

    @property
    def state(self) -> BackfillRunState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def begin(self, trigger: str) -> Optional[str]:
        """
        Start a run.

        Returns:
            The new run id, or None when a run is already FETCHING
        """
        if not self._guard.acquire(blocking=False):
            state_logger.info(
                "Backfill already running - trigger ignored",
                trigger=trigger,
                run_id=self.state.run_id
            )
            return None

        run_id = uuid.uuid4().hex[:12]
        with self._state_lock:
            self._state = BackfillRunState(
                phase=BackfillPhase.FETCHING,
                run_id=run_id,
                started_at=utc_now()
            )

        log_state_transition(
            state_logger,
            run_id=run_id,
            from_state=BackfillPhase.IDLE.value,
            to_state=BackfillPhase.FETCHING.value,
            trigger=trigger
        )
        return run_id

    def advance(self, ticker: str, page: int) -> BackfillRunState:
        """Record that the run is fetching ``page`` of ``ticker``."""
        with self._state_lock:
            if not self._state.is_running:
                raise StateTransitionError(
                    "Cannot fetch while no backfill run is active",
                    current_state=self._state.phase.value,
                    attempted_transition=f"fetching:{ticker}:{page}"
                )
            previous = self._state
            self._state = previous.fetching(ticker, page)
            current = self._state

        trigger = "next_page" if previous.ticker == ticker else "next_ticker"
        state_logger.debug(
            "Backfill fetching",
            run_id=current.run_id,
            ticker=ticker,
            page=page,
            trigger=trigger
        )
        return current

    def finish(self, context: Optional[dict] = None) -> None:
        """Return to IDLE and release the run guard."""
        with self._state_lock:
            if not self._state.is_running:
                raise StateTransitionError(
                    "No backfill run to finish",
                    current_state=self._state.phase.value,
                    attempted_transition=BackfillPhase.IDLE.value
                )
            run_id = self._state.run_id
            self._state = BackfillRunState()

        self._guard.release()
        log_state_transition(
            state_logger,
            run_id=run_id,
            from_state=BackfillPhase.FETCHING.value,
            to_state=BackfillPhase.IDLE.value,
            trigger="run_complete",
            context=context
        )
