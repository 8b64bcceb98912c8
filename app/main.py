"""
API Planilhas - ingestão de planilhas de maquininha, métricas e repasses.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.routers import card_values, health, spreadsheets, transfers, views
from app.services.selection import ViewRefresher, view_registry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# Silence httpx per-request logs (every PostgREST call of the view refresher)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

refresher = ViewRefresher(
    view_registry,
    settings.view_refresh_interval_seconds,
    settings.view_idle_timeout_seconds,
)


@asynccontextmanager
async def lifespan(app):
    await refresher.start()
    yield
    await refresher.stop()


app = FastAPI(
    title="API Planilhas",
    description="Upload de planilhas de vendas, métricas por período e repasses",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS for dashboard
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(spreadsheets.router)
app.include_router(card_values.router)
app.include_router(transfers.router)
app.include_router(views.router)
