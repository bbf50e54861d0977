import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

from studio_sync import config
from studio_sync.api import dashboard, notes, orders
from studio_sync.db.session import get_engine
from studio_sync.services.live_sync import LiveSyncStream

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Studio Order Sync")

# dashboards plus the storefront (cross-origin webhook fetch)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.dashboard_origins() + [config.STOREFRONT_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orders.router, prefix="/orders", tags=["orders"])
app.include_router(notes.router, prefix="/notes", tags=["notes"])
app.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])


@app.on_event("startup")
def on_startup():
    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Tables ready on %s", engine.url.render_as_string(hide_password=True))


@app.get("/")
async def root():
    return {"status": "ok", "service": "studio-order-sync"}


@app.get("/health")
async def health():
    """Liveness only: never touches the database, a hung query must not fail the probe."""
    return {"status": "ok", "streams": LiveSyncStream.active}
