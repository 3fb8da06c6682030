"""
Manual sync trigger

Runs one sync in-process. Overlapping runs in the same process are rejected
with 409; the scheduled flow is guarded by its own deployment concurrency.
"""

import asyncio

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from shopsync.database.connection import get_session_factory
from shopsync.serving.api.auth import CurrentUser, get_current_user
from shopsync.serving.cache import analytics_cache
from shopsync.sync.orchestrator import SyncOrchestrator, SyncResult

router = APIRouter()
logger = structlog.get_logger(__name__)

_run_lock = asyncio.Lock()


def get_orchestrator() -> SyncOrchestrator:
    """Build an orchestrator over the application engine."""
    return SyncOrchestrator.from_settings(get_session_factory())


@router.post("/run", response_model=SyncResult)
async def run_sync(
    user: CurrentUser = Depends(get_current_user),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResult:
    """
    Run one sync now and return its summary.

    Fetch and store failures are reported in the body with success false,
    not as HTTP errors.
    """
    if _run_lock.locked():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A sync run is already in progress",
        )

    async with _run_lock:
        logger.info("Manual sync triggered", user=user.email)
        result = await orchestrator.run()

    if result.success:
        await analytics_cache.invalidate_all()

    return result
