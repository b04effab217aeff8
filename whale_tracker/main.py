"""
Polymarket Whale Tracker - Main Application

This is the main entry point for the application.
It sets up:
1. FastAPI web server (the JSON endpoints the dashboard polls)
2. The tracker manager (one background scan job per running category)
3. The persisted tracker state

To run locally:
    uvicorn whale_tracker.main:app --reload

To run in production:
    uvicorn whale_tracker.main:app --host 0.0.0.0 --port 8000
"""
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from .categories import CATEGORY_KEYWORDS, TRACKER_CATEGORIES, UnknownCategoryError
from .config import settings
from .database import StateStore
from .formatting import format_currency, format_wallet, time_ago
from .polymarket_client import PolymarketClient
from .tracker_manager import TrackerMonitorManager

# =========================================
# CONFIGURE LOGGING
# =========================================

logger.remove()  # Remove default handler
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=settings.LOG_LEVEL
)

# =========================================
# GLOBAL STATE
# =========================================

# These are initialized on startup
client: Optional[PolymarketClient] = None
store: Optional[StateStore] = None
manager: Optional[TrackerMonitorManager] = None


# =========================================
# PYDANTIC MODELS (API Request/Response)
# =========================================

class SettingsResponse(BaseModel):
    minScore: int
    autoTrade: bool
    activeCategories: list


class SettingsUpdate(BaseModel):
    minScore: Optional[int] = Field(None, ge=0, le=100)
    autoTrade: Optional[bool] = None


class ScanResponse(BaseModel):
    category: str
    scanned: bool


def get_manager() -> TrackerMonitorManager:
    if manager is None:
        raise HTTPException(status_code=503, detail="Tracker manager not initialized")
    return manager


def with_display_fields(whale: Dict[str, Any]) -> Dict[str, Any]:
    """Add the short wallet, relative time and bet label the dashboard shows."""
    return {
        **whale,
        "walletShort": format_wallet(whale.get("wallet")),
        "timeAgo": time_ago(whale.get("timestamp", 0)),
        "betSizeDisplay": format_currency(whale.get("betSize", 0)),
    }


def tracker_payload(view: Dict[str, Any]) -> Dict[str, Any]:
    return {**view, "whales": [with_display_fields(w) for w in view["whales"]]}


# =========================================
# LIFESPAN (Startup/Shutdown)
# =========================================

async def create_components():
    """Build the client, state store and manager used by the app."""
    api_client = PolymarketClient()
    await api_client.open()

    state_store: Optional[StateStore] = StateStore()
    try:
        await state_store.init()
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"❌ State store initialization failed: {e}")
        logger.warning("⚠️ Continuing without persisted state - trackers won't resume after restart")
        await state_store.close()
        state_store = None

    return api_client, state_store, TrackerMonitorManager(api_client, store=state_store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle.

    This runs:
    - On startup: Open the API client and state store, resume saved trackers
    - On shutdown: Stop scan jobs and clean up resources
    """
    global client, store, manager

    logger.info("🚀 Starting Polymarket Whale Tracker...")

    client, store, manager = await create_components()
    resumed = await manager.initialize()
    if resumed:
        logger.info(f"   Resuming trackers: {', '.join(resumed)}")

    logger.info("🎉 Application ready!")

    yield  # Application runs here

    # Shutdown
    logger.info("🛑 Shutting down...")

    await manager.shutdown()
    await client.close()
    if store:
        await store.close()

    manager = None
    logger.info("👋 Goodbye!")


# =========================================
# CREATE FASTAPI APP
# =========================================

app = FastAPI(
    title="Polymarket Whale Tracker",
    description="Category whale trackers with wallet quality scoring",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        settings.FRONTEND_URL,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# API ENDPOINTS
# =========================================

@app.get("/health")
async def health_check(tracker: TrackerMonitorManager = Depends(get_manager)):
    """Health check endpoint for container monitoring."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        **tracker.get_stats(),
    }


@app.get("/trackers")
async def list_trackers(tracker: TrackerMonitorManager = Depends(get_manager)):
    """Every category tracker with its stats and top whales."""
    return [tracker_payload(view) for view in tracker.all_category_views()]


@app.post("/trackers/start-all")
async def start_all_trackers(tracker: TrackerMonitorManager = Depends(get_manager)):
    await tracker.start_all()
    return [tracker_payload(view) for view in tracker.all_category_views()]


@app.post("/trackers/stop-all")
async def stop_all_trackers(tracker: TrackerMonitorManager = Depends(get_manager)):
    await tracker.stop_all()
    return [tracker_payload(view) for view in tracker.all_category_views()]


@app.get("/trackers/{category}")
async def get_tracker(category: str, tracker: TrackerMonitorManager = Depends(get_manager)):
    return tracker_payload(tracker.category_view(category))


@app.post("/trackers/{category}/start")
async def start_tracker(category: str, tracker: TrackerMonitorManager = Depends(get_manager)):
    """Start a tracker. Runs the first scan before returning."""
    await tracker.start(category)
    return tracker_payload(tracker.category_view(category))


@app.post("/trackers/{category}/stop")
async def stop_tracker(category: str, tracker: TrackerMonitorManager = Depends(get_manager)):
    await tracker.stop(category)
    return tracker_payload(tracker.category_view(category))


@app.post("/trackers/{category}/scan", response_model=ScanResponse)
async def scan_tracker(category: str, tracker: TrackerMonitorManager = Depends(get_manager)):
    """
    Trigger a scan now.

    Subject to the same 5 second throttle as scheduled scans; `scanned`
    is false when the scan was skipped or failed.
    """
    if category not in TRACKER_CATEGORIES:
        raise UnknownCategoryError(category)
    if not tracker.is_running(category):
        raise HTTPException(status_code=409, detail=f"Tracker {category} is not running")
    scanned = await tracker.scan(category)
    return ScanResponse(category=category, scanned=scanned)


@app.get("/alerts")
async def get_alerts(tracker: TrackerMonitorManager = Depends(get_manager)):
    """Global whale alert feed across running trackers."""
    feed = tracker.alert_feed().to_dict()
    feed["alerts"] = [with_display_fields(a) for a in feed["alerts"]]
    return feed


@app.get("/activity")
async def get_activity(tracker: TrackerMonitorManager = Depends(get_manager)):
    return [entry.to_dict() for entry in tracker.activity_entries()]


@app.get("/settings", response_model=SettingsResponse)
async def get_settings(tracker: TrackerMonitorManager = Depends(get_manager)):
    state = tracker.current_state()
    return SettingsResponse(
        minScore=state.min_score,
        autoTrade=state.auto_trade,
        activeCategories=state.active_categories,
    )


@app.put("/settings", response_model=SettingsResponse)
async def update_settings(update: SettingsUpdate, tracker: TrackerMonitorManager = Depends(get_manager)):
    if update.minScore is not None:
        await tracker.set_min_score(update.minScore)
    if update.autoTrade is not None:
        await tracker.set_auto_trade(update.autoTrade)
    return await get_settings(tracker)


@app.get("/categories")
async def get_categories(tracker: TrackerMonitorManager = Depends(get_manager)):
    """Tracker categories, their keywords, and Polymarket's own tags."""
    tags = await tracker.client.get_all_tags() if tracker.client is not None else []
    return {
        "trackers": TRACKER_CATEGORIES,
        "keywords": CATEGORY_KEYWORDS,
        "tags": tags,
    }


# =========================================
# ERROR HANDLERS
# =========================================

@app.exception_handler(UnknownCategoryError)
async def unknown_category_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"detail": f"Unknown category: {exc.args[0] if exc.args else ''}"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


# =========================================
# RUN DIRECTLY
# =========================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "whale_tracker.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
