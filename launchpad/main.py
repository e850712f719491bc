"""
Launchpad API Server

FastAPI application serving the launchpad core.

Background work started with the app:
- Daily rotation timer (thread, ROTATION_TIMER_ENABLED)
- Leaderboard SSE heartbeat (asyncio task)
- Mint watcher polling tracked NFT contracts (asyncio task, MINT_WATCHER_ENABLED)
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .launchpad_service import get_service
from .leaderboard_stream import get_broadcaster
from .lifecycle_scheduler import DailyRotationTimer
from .mint_tracker import MintWatcher, get_mint_tracker
from .router import router as launchpad_router

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("launchpad_api")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
ROTATION_TIMER_ENABLED = os.getenv("ROTATION_TIMER_ENABLED", "true").lower() in ("1", "true", "yes")
MINT_WATCHER_ENABLED = os.getenv("MINT_WATCHER_ENABLED", "false").lower() in ("1", "true", "yes")

_rotation_timer: Optional[DailyRotationTimer] = None
_mint_watcher: Optional[MintWatcher] = None

# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
app = FastAPI(
    title="Launchpad API",
    description="Project submission, daily voting, presale rotation and XP leaderboards",
    version=__version__
)

app.include_router(launchpad_router)


@app.get("/")
async def root():
    return {
        "service": "Launchpad API",
        "status": "running",
        "version": __version__
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    service = get_service()
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
        "components": {
            "api": "operational",
            "projects": service.registry.get_project_counts(),
            "rotation_timer": _rotation_timer.get_status() if _rotation_timer else None,
            "mint_watcher": _mint_watcher.get_status() if _mint_watcher else None,
            "stream_connections": get_broadcaster().connection_count,
        },
    }


# -----------------------------------------------------------------------------
# Startup/Shutdown Events
# -----------------------------------------------------------------------------
@app.on_event("startup")
async def startup_event():
    global _rotation_timer, _mint_watcher
    logger.info("Launchpad API starting up...")

    service = get_service()
    broadcaster = get_broadcaster()

    # Leaderboard changes may come from the rotation thread
    loop = asyncio.get_running_loop()
    service.add_listener(lambda: loop.call_soon_threadsafe(broadcaster.broadcast))
    await broadcaster.start()

    if ROTATION_TIMER_ENABLED:
        _rotation_timer = DailyRotationTimer(service.run_rotation_if_due)
        _rotation_timer.start()

    if MINT_WATCHER_ENABLED:
        try:
            _mint_watcher = MintWatcher(get_mint_tracker())
            await _mint_watcher.start()
        except Exception as e:
            logger.error(f"Failed to start mint watcher: {e}")

    counts = service.registry.get_project_counts()
    logger.info(
        f"Launchpad ready: {counts['active']} active, {counts['submissions']} submissions, "
        f"{counts['archived']} archived"
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Launchpad API shutting down...")

    if _rotation_timer:
        _rotation_timer.stop()

    if _mint_watcher:
        try:
            await _mint_watcher.stop()
        except Exception as e:
            logger.error(f"Error stopping mint watcher: {e}")

    await get_broadcaster().stop()


# -----------------------------------------------------------------------------
# Main Entry Point (for development)
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
