"""
Supabase client shared by every store module.

Planilhas, card values and repasses are written from the backend, so the key
must bypass RLS (service role / secret key). A publishable key only logs a
critical warning at first use; writes then fail at the PostgREST layer.
"""
import base64
import json
import logging
from typing import Literal

from supabase import create_client, Client

from app.config import settings

logger = logging.getLogger(__name__)

KeyKind = Literal["secret", "service_role", "publishable", "anon", "unknown"]

# Table read by the health check
HEALTH_TABLE = "customer_spreadsheets"

_client: Client | None = None


def _jwt_role(token: str) -> str | None:
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    role = claims.get("role") if isinstance(claims, dict) else None
    return role if isinstance(role, str) else None


def classify_key(key: str) -> KeyKind:
    if key.startswith("sb_secret_"):
        return "secret"
    if key.startswith(("sb_publishable_", "sbp_")):
        return "publishable"
    role = _jwt_role(key)
    if role == "service_role":
        return "service_role"
    if role == "anon":
        return "anon"
    return "unknown"


def backend_key() -> str:
    return settings.supabase_service_role_key or settings.supabase_key


def get_db() -> Client:
    global _client
    if _client is None:
        key = backend_key()
        kind = classify_key(key)
        if kind not in ("secret", "service_role"):
            logger.critical(
                "Supabase backend key is %s, not service-role. Planilha saves and "
                "repasse reconciliation may fail under RLS. Configure SUPABASE_SERVICE_ROLE_KEY.",
                kind,
            )
        _client = create_client(settings.supabase_url, key)
    return _client


def ping(db) -> bool:
    """True when the planilhas table answers a one-row select."""
    try:
        db.table(HEALTH_TABLE).select("id").limit(1).execute()
    except Exception:
        logger.exception("Supabase health check failed")
        return False
    return True
