"""
In-process notifications between upload, card values and repasse flows.

Handlers run synchronously in the emitting thread. A failing handler is logged
and never breaks the emitter or the remaining handlers.
"""
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, ClassVar

logger = logging.getLogger(__name__)

RECENT_EVENTS_LIMIT = 200


@dataclass(frozen=True)
class PeriodEvent:
    name: ClassVar[str] = ""

    customer_id: str
    terminal_id: str | None
    type: str
    reference_month: str | None
    reference_date: str | None = None
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {"event": self.name, **asdict(self)}


@dataclass(frozen=True)
class SpreadsheetSaved(PeriodEvent):
    name: ClassVar[str] = "spreadsheet-saved"

    spreadsheet_id: str | None = None


@dataclass(frozen=True)
class CardValuesUpdated(PeriodEvent):
    name: ClassVar[str] = "card-values-updated"

    action: str = "saved"  # saved | deleted


@dataclass(frozen=True)
class TransferReconciled(PeriodEvent):
    name: ClassVar[str] = "transfer-reconciled"

    action: str = "created"  # created | updated
    transfer_id: str | None = None


Handler = Callable[[PeriodEvent], None]


class EventBus:
    def __init__(self, history: int = RECENT_EVENTS_LIMIT):
        self._handlers: dict[str, list[Handler]] = {}
        self._recent: deque[dict] = deque(maxlen=history)
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event_name, []).append(handler)

    def unsubscribe(self, event_name: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, event: PeriodEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.name, []))
            self._recent.append(event.to_dict())

        logger.debug("Event %s for %s (%d handlers)", event.name, event.customer_id, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %r failed for %s", handler, event.name)

    def recent_events(self, customer_id: str | None = None, limit: int = 50) -> list[dict]:
        """Newest first."""
        with self._lock:
            events = list(self._recent)
        if customer_id:
            events = [e for e in events if e["customer_id"] == customer_id]
        return list(reversed(events))[:limit]

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._recent.clear()


event_bus = EventBus()
