import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from src.testmaster.api.autonomous_endpoints import router as autonomous_router
from src.testmaster.api.healing_endpoints import router as healing_router
from src.testmaster.api.monitoring_endpoints import router as monitoring_router
from src.testmaster.core.config import settings
from src.testmaster.core.logging_config import setup_logging
from src.testmaster.services.healing_event_store import get_healing_event_store
from src.testmaster.services.session_registry import get_session_registry

# --- Logging Configuration ---
setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)

# --- FastAPI App ---
app = FastAPI(title="TestMaster - Autonomous Testing with Self-Healing Locators")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- API Routers ---
app.include_router(autonomous_router)
app.include_router(healing_router)
app.include_router(monitoring_router)

# --- Generated reports ---
os.makedirs(settings.REPORTS_DIR, exist_ok=True)
app.mount("/reports", StaticFiles(directory=settings.REPORTS_DIR), name="reports")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.on_event("startup")
async def startup_event():
    await get_healing_event_store().initialize()
    logging.info("Application startup complete.")


@app.on_event("shutdown")
async def shutdown_event():
    await get_session_registry().shutdown()
    logging.info("Application shutdown complete.")
