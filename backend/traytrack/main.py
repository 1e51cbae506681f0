import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from traytrack.config import settings
from traytrack.middleware.exceptions import register_exception_handlers
from traytrack.routers import health, scans, trays

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="TrayTrack",
    description="Tray lineage tracking across production stations",
    version="0.1.0",
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(trays.router, prefix="/api/trays", tags=["trays"])
app.include_router(scans.router, prefix="/api/scans", tags=["scans"])
