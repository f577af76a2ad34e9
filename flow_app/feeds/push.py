"""
Push-feed frame handler.

A push frame is a JSON array of events. Status events are logged, trade
events (``ev == "T"``) are ingested one by one and everything else is
ignored. A bad event never aborts the rest of its frame.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

import orjson

from ..config.defaults import IngestParams
from ..data.models import IngestResult
from ..logging.config import get_ingest_logger

if TYPE_CHECKING:
    from ..engine import FlowPipeline

logger = get_ingest_logger(__name__)

TRADE_EVENT = "T"
STATUS_EVENT = "status"


@dataclass(frozen=True)
class PushFrameReport:
    """Outcome of handling one push frame."""
    results: tuple[IngestResult, ...] = field(default_factory=tuple)
    statuses: tuple[str, ...] = field(default_factory=tuple)
    ignored: int = 0
    malformed: bool = False

    @property
    def ingested(self) -> int:
        return sum(1 for r in self.results if r.success and r.skipped_reason is None)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


class PushFeedHandler:
    """Routes push-feed frames into the ingest pipeline."""

    def __init__(self, pipeline: "FlowPipeline", params: Optional[IngestParams] = None):
        self.pipeline = pipeline
        self.params = params or IngestParams()
        self.authenticated = False

    def handle_message(self, message: Union[str, bytes, list, dict]) -> PushFrameReport:
        """
        Handle one push frame.

        Args:
            message: Raw frame text, or an already decoded array/object

        Returns:
            Per-event ingest results plus status and ignore counts
        """
        events = self._decode(message)
        if events is None:
            return PushFrameReport(malformed=True)

        results: list[IngestResult] = []
        statuses: list[str] = []
        ignored = 0

        for event in events:
            if not isinstance(event, dict):
                ignored += 1
                continue

            kind = event.get("ev")
            if kind == STATUS_EVENT:
                statuses.append(self._handle_status(event))
            elif kind == TRADE_EVENT:
                results.append(self.pipeline.ingest(event, source=self.params.source_push))
            else:
                ignored += 1

        return PushFrameReport(
            results=tuple(results),
            statuses=tuple(statuses),
            ignored=ignored,
        )

    def _decode(self, message: Union[str, bytes, list, dict]) -> Optional[list[Any]]:
        if isinstance(message, (str, bytes)):
            try:
                message = orjson.loads(message)
            except orjson.JSONDecodeError as e:
                logger.warning("Malformed push frame", error=str(e))
                return None

        if isinstance(message, dict):
            return [message]
        if isinstance(message, list):
            return message

        logger.warning("Unexpected push frame type", frame_type=type(message).__name__)
        return None

    def _handle_status(self, event: dict[str, Any]) -> str:
        status = str(event.get("status", ""))
        detail = event.get("message", "")

        if status == "auth_success":
            self.authenticated = True
            logger.info("Push feed authenticated")
        elif status == "connected":
            logger.info("Push feed connected", detail=detail)
        else:
            logger.warning("Push feed status message", status=status, detail=detail)
        return status
