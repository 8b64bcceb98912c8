from fastapi import APIRouter

from app.db.supabase import backend_key, classify_key, get_db, ping

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/health/db")
async def health_db():
    """Query one planilha row and report which kind of key the backend uses."""
    reachable = ping(get_db())
    return {
        "status": "ok" if reachable else "degraded",
        "database": "ok" if reachable else "unreachable",
        "key_kind": classify_key(backend_key()),
    }
