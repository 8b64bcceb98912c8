"""
Selection State Machine - which period an open view is showing.

    UNSELECTED --periods loaded (non-empty)--> AUTO_SELECTED (most recent period)
    UNSELECTED / AUTO_SELECTED / USER_SELECTED --operator picks--> USER_SELECTED
    any --customer/terminal/type change--> UNSELECTED (new generation)

Background refresh only ever delivers events (periods loaded, content loaded).
Once USER_SELECTED, no refresh can change the selected key; it may only update
the available periods and the content for the key already selected.

Refresh results are tagged with a RefreshTicket taken before the fetch. A
result whose ticket no longer matches the current generation (context changed)
or the current key (operator picked another period meanwhile) is dropped.
"""
import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum

from app.config import settings
from app.db.supabase import get_db
from app.models.spreadsheets import DATE_RE, MONTH_RE, SpreadsheetSnapshot, SpreadsheetType
from app.services.metrics import SpreadsheetMetrics
from app.services.spreadsheet_service import get_metrics
from app.services.spreadsheet_store import (
    get_latest_spreadsheet,
    get_spreadsheet_by_date,
    list_available_days,
    list_available_months,
)

logger = logging.getLogger(__name__)


class SelectionState(str, Enum):
    UNSELECTED = "unselected"
    AUTO_SELECTED = "auto_selected"
    USER_SELECTED = "user_selected"


@dataclass(frozen=True)
class SelectionContext:
    customer_id: str
    terminal_id: str | None = None
    type: SpreadsheetType = "monthly"


@dataclass(frozen=True)
class PeriodSelection:
    context: SelectionContext
    state: SelectionState = SelectionState.UNSELECTED
    selected_key: str | None = None
    available: tuple[str, ...] = ()
    generation: int = 0

    def on_periods_loaded(self, periods: list[str]) -> "PeriodSelection":
        available = tuple(periods)
        if self.state == SelectionState.UNSELECTED and available:
            return replace(
                self,
                available=available,
                state=SelectionState.AUTO_SELECTED,
                selected_key=max(available),
            )
        return replace(self, available=available)

    def on_user_select(self, key: str) -> "PeriodSelection":
        key = (key or "").strip()
        pattern = DATE_RE if self.context.type == "daily" else MONTH_RE
        if not pattern.match(key):
            raise ValueError(f"Invalid {self.context.type} period: {key!r}")
        return replace(self, state=SelectionState.USER_SELECTED, selected_key=key)

    def on_context_change(self, context: SelectionContext) -> "PeriodSelection":
        if context == self.context:
            return self
        return PeriodSelection(context=context, generation=self.generation + 1)


@dataclass(frozen=True)
class RefreshTicket:
    generation: int
    selected_key: str | None
    context: SelectionContext


@dataclass
class ViewContent:
    snapshot: SpreadsheetSnapshot | None
    metrics: SpreadsheetMetrics | None = None


class SelectionMachine:
    """Owns one view's PeriodSelection. Safe to drive from the event loop and a refresh thread."""

    def __init__(self, context: SelectionContext):
        self._selection = PeriodSelection(context=context)
        self._content: ViewContent | None = None
        self._lock = threading.Lock()

    @property
    def selection(self) -> PeriodSelection:
        return self._selection

    @property
    def content(self) -> ViewContent | None:
        return self._content

    def select(self, key: str) -> PeriodSelection:
        with self._lock:
            selection = self._selection.on_user_select(key)
            if selection.selected_key != self._selection.selected_key:
                self._content = None
            self._selection = selection
            return selection

    def change_context(self, context: SelectionContext) -> PeriodSelection:
        with self._lock:
            selection = self._selection.on_context_change(context)
            if selection is not self._selection:
                self._content = None
            self._selection = selection
            return selection

    def begin_refresh(self) -> RefreshTicket:
        with self._lock:
            s = self._selection
            return RefreshTicket(generation=s.generation, selected_key=s.selected_key, context=s.context)

    def apply_periods(self, ticket: RefreshTicket, periods: list[str]) -> bool:
        with self._lock:
            if ticket.generation != self._selection.generation:
                logger.debug("Dropping stale periods (generation %d)", ticket.generation)
                return False
            before = self._selection.selected_key
            self._selection = self._selection.on_periods_loaded(periods)
            if self._selection.selected_key != before:
                self._content = None
            return True

    def apply_content(self, ticket: RefreshTicket, content: ViewContent) -> bool:
        with self._lock:
            current = self._selection
            if ticket.generation != current.generation or ticket.selected_key != current.selected_key:
                logger.debug("Dropping stale content for %s", ticket.selected_key)
                return False
            self._content = content
            return True


@dataclass
class ViewSession:
    """A machine plus the store reads that feed it."""

    context: SelectionContext
    db: object = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    last_seen: float = field(default_factory=time.monotonic)
    machine: SelectionMachine = field(init=False)

    def __post_init__(self):
        self.machine = SelectionMachine(self.context)

    def touch(self) -> None:
        """Mark the view as seen by its dashboard. Background refreshes never call this."""
        self.last_seen = time.monotonic()

    def idle_for(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_seen

    def _db(self):
        return self.db if self.db is not None else get_db()

    def _fetch_periods(self, db, context: SelectionContext) -> list[str]:
        if context.type == "daily":
            return list_available_days(db, context.customer_id, context.terminal_id)
        return list_available_months(db, context.customer_id, context.terminal_id, "monthly")

    def _fetch_content(self, db, context: SelectionContext, key: str) -> ViewContent:
        if context.type == "daily":
            snapshot = get_spreadsheet_by_date(db, context.customer_id, key, context.terminal_id)
        else:
            snapshot = get_latest_spreadsheet(db, context.customer_id, context.terminal_id, "monthly", key)
        metrics = get_metrics(db, snapshot) if snapshot else None
        return ViewContent(snapshot=snapshot, metrics=metrics)

    def refresh(self) -> PeriodSelection:
        """One background cycle: re-read periods, then content for whatever is selected."""
        db = self._db()

        ticket = self.machine.begin_refresh()
        periods = self._fetch_periods(db, ticket.context)
        self.machine.apply_periods(ticket, periods)

        ticket = self.machine.begin_refresh()
        if ticket.selected_key:
            content = self._fetch_content(db, ticket.context, ticket.selected_key)
            self.machine.apply_content(ticket, content)
        return self.machine.selection

    def to_dict(self) -> dict:
        selection = self.machine.selection
        content = self.machine.content
        snapshot = content.snapshot if content else None
        return {
            "id": self.id,
            "customer_id": selection.context.customer_id,
            "terminal_id": selection.context.terminal_id,
            "type": selection.context.type,
            "state": selection.state.value,
            "selected": selection.selected_key,
            "available": list(selection.available),
            "spreadsheet": {
                "id": snapshot.id,
                "file_name": snapshot.file_name,
                "uploaded_at": snapshot.uploaded_at.isoformat(),
                "reference_month": snapshot.reference_month,
                "reference_date": snapshot.reference_date,
                "description": snapshot.description,
                "total_rows": len(snapshot.rows),
            } if snapshot else None,
            "metrics": content.metrics.model_dump(mode="json") if content and content.metrics else None,
        }


class ViewRegistry:
    def __init__(self):
        self._views: dict[str, ViewSession] = {}
        self._lock = threading.Lock()

    def add(self, session: ViewSession) -> ViewSession:
        with self._lock:
            self._views[session.id] = session
        return session

    def get(self, view_id: str) -> ViewSession | None:
        with self._lock:
            return self._views.get(view_id)

    def remove(self, view_id: str) -> bool:
        with self._lock:
            return self._views.pop(view_id, None) is not None

    def all(self) -> list[ViewSession]:
        with self._lock:
            return list(self._views.values())

    def evict_idle(self, timeout_seconds: float, now: float | None = None) -> list[str]:
        """Drop views whose dashboard went quiet (tab closed without DELETE)."""
        now = now if now is not None else time.monotonic()
        with self._lock:
            idle = [vid for vid, s in self._views.items() if s.idle_for(now) > timeout_seconds]
            for vid in idle:
                del self._views[vid]
        return idle


view_registry = ViewRegistry()


class ViewRefresher:
    """Periodically refreshes every open view in a worker thread and drops idle ones."""

    def __init__(self, registry: ViewRegistry, interval_seconds: float | None = None,
                 idle_timeout_seconds: float | None = None):
        self.registry = registry
        self.interval = interval_seconds if interval_seconds is not None else settings.view_refresh_interval_seconds
        self.idle_timeout = (
            idle_timeout_seconds if idle_timeout_seconds is not None else settings.view_idle_timeout_seconds
        )
        self._task: asyncio.Task | None = None
        self._cycles = 0

    async def start(self):
        self._task = asyncio.create_task(self._scheduler())
        logger.info("ViewRefresher started (interval=%.1fs)", self.interval)

    async def stop(self):
        if self._task:
            self._task.cancel()
            logger.info("ViewRefresher stopped")

    @property
    def cycles(self) -> int:
        return self._cycles

    async def _scheduler(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.refresh_all()
            except Exception:
                logger.exception("ViewRefresher scheduler error")

    async def refresh_all(self) -> int:
        evicted = self.registry.evict_idle(self.idle_timeout)
        if evicted:
            logger.info("Dropped %d idle view(s): %s", len(evicted), ", ".join(evicted))

        refreshed = 0
        for session in self.registry.all():
            try:
                await asyncio.to_thread(session.refresh)
                refreshed += 1
            except Exception:
                logger.exception("View %s refresh failed", session.id)
        self._cycles += 1
        return refreshed
