"""
Open dashboard views. Each view owns one SelectionMachine; the background
ViewRefresher keeps its periods and content fresh without ever overriding an
operator's choice.
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.models.spreadsheets import SpreadsheetType
from app.services.notifications import event_bus
from app.services.selection import SelectionContext, ViewSession, view_registry

router = APIRouter(prefix="/views", tags=["views"])


class ContextBody(BaseModel):
    customer_id: str
    terminal_id: str | None = None
    type: SpreadsheetType = "monthly"


class SelectBody(BaseModel):
    period: str


def _context(body: ContextBody) -> SelectionContext:
    return SelectionContext(customer_id=body.customer_id, terminal_id=body.terminal_id or None, type=body.type)


def _session(view_id: str) -> ViewSession:
    """Look up a view for a dashboard request; keeps it alive for the refresher."""
    session = view_registry.get(view_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"View {view_id} não encontrada")
    session.touch()
    return session


@router.get("/events")
async def recent_events(customer_id: str | None = None, limit: int = 50):
    return event_bus.recent_events(customer_id, limit)


@router.post("")
async def open_view(body: ContextBody):
    session = view_registry.add(ViewSession(context=_context(body)))
    try:
        session.refresh()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return session.to_dict()


@router.get("/{view_id}")
async def get_view(view_id: str):
    return _session(view_id).to_dict()


@router.post("/{view_id}/select")
async def select_period(view_id: str, body: SelectBody):
    session = _session(view_id)
    try:
        session.machine.select(body.period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        session.refresh()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return session.to_dict()


@router.post("/{view_id}/context")
async def change_context(view_id: str, body: ContextBody):
    session = _session(view_id)
    session.context = _context(body)
    session.machine.change_context(session.context)
    try:
        session.refresh()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return session.to_dict()


@router.post("/{view_id}/refresh")
async def refresh_view(view_id: str):
    session = _session(view_id)
    try:
        session.refresh()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return session.to_dict()


@router.delete("/{view_id}")
async def close_view(view_id: str):
    if not view_registry.remove(view_id):
        raise HTTPException(status_code=404, detail=f"View {view_id} não encontrada")
    return {"status": "ok"}
