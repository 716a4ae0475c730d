from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import List, Optional
from paddock.core.config import settings
from paddock.exceptions import (
    AppException,
    NotFoundError,
    handle_app_exception,
    handle_generic_exception,
    handle_http_exception
)
from paddock.services.racing import RacingDataService
from paddock.schemas import ApiKeyRequest, Horse, Race, StatusResponse
import logging

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Paddock Racing Data API",
    description="Horse racing data layer: races, results, horses, jockey and trainer statistics",
    version="1.0.0"
)

# =============================================================================
# CENTRALIZED ERROR HANDLING
# =============================================================================

@app.exception_handler(AppException)
async def app_exception_handler(request, exc: AppException):
    """Handle application-specific exceptions."""
    return handle_app_exception(exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle FastAPI HTTPExceptions with standardized format."""
    return handle_http_exception(exc)


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception):
    """Handle all other exceptions and convert to standardized format."""
    return handle_generic_exception(exc)

# Initialize services
racing_service = RacingDataService()


def get_racing_service() -> RacingDataService:
    return racing_service

# Scheduler for background refresh
scheduler = AsyncIOScheduler()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {
        "message": "Paddock Racing Data API",
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health")
async def health_check(service: RacingDataService = Depends(get_racing_service)):
    return {
        "status": "healthy",
        "mode": settings.MODE,
        "api_key_configured": service.api_key_configured,
        "loading": [s.kind.value for s in service.states() if s.is_loading],
    }


@app.get("/api/status", response_model=StatusResponse)
async def get_status(service: RacingDataService = Depends(get_racing_service)):
    """Published fetch state of every operation kind."""
    return StatusResponse(
        api_key_configured=service.api_key_configured,
        states=service.states()
    )


# =============================================================================
# RACES
# =============================================================================

@app.get("/api/races", response_model=List[Race])
async def get_races(
    force_refresh: bool = False,
    service: RacingDataService = Depends(get_racing_service)
):
    """
    Today's races with entries.

    Races whose runners could not all be resolved carry is_degraded=true.
    """
    return await service.fetch_races(force_refresh=force_refresh)


@app.get("/api/races/{race_id}", response_model=Race)
async def get_race(race_id: str, service: RacingDataService = Depends(get_racing_service)):
    race = await service.fetch_race(race_id)
    if race is None:
        raise NotFoundError("Race", race_id)
    return race


@app.get("/api/results", response_model=List[Race])
async def get_results(
    force_refresh: bool = False,
    service: RacingDataService = Depends(get_racing_service)
):
    return await service.fetch_results(force_refresh=force_refresh)


# =============================================================================
# HORSES
# =============================================================================

@app.get("/api/horses", response_model=List[Horse])
async def search_horses(
    q: str = "",
    limit: Optional[int] = Query(None, ge=1, le=100),
    force_refresh: bool = False,
    service: RacingDataService = Depends(get_racing_service)
):
    """
    Search today's runners by horse, jockey, trainer, sire or dam.

    An empty query lists runners up to the limit.
    """
    return await service.fetch_horses(q, limit=limit, force_refresh=force_refresh)


@app.get("/api/horses/{horse_id}", response_model=Horse)
async def get_horse(horse_id: str, service: RacingDataService = Depends(get_racing_service)):
    horse = await service.fetch_horse_details(horse_id)
    if horse is None:
        raise NotFoundError("Horse", horse_id)
    return horse


# =============================================================================
# CONFIGURATION
# =============================================================================

@app.put("/api/credentials")
async def update_credentials(
    request: ApiKeyRequest,
    service: RacingDataService = Depends(get_racing_service)
):
    """Store a new RapidAPI key. Rejected with 400 when its format is invalid."""
    await service.configure_api_key(request.api_key)
    return {"status": "success", "api_key_configured": True}


@app.post("/api/cache/clear")
async def clear_cache(service: RacingDataService = Depends(get_racing_service)):
    await service.clear_cache()
    return {"status": "success", "message": "Cache cleared"}


# =============================================================================
# BACKGROUND REFRESH
# =============================================================================

async def background_refresh():
    """Refresh races when the last successful fetch is older than the refresh window."""
    try:
        await racing_service.refresh_if_stale(settings.BACKGROUND_REFRESH_MINUTES * 60)
    except Exception as e:
        logger.error(f"Background refresh failed: {str(e)}")


@app.on_event("startup")
async def startup_event():
    """Start background refresh scheduler"""
    if settings.is_testing:
        return
    try:
        scheduler.add_job(
            background_refresh,
            IntervalTrigger(minutes=settings.BACKGROUND_REFRESH_MINUTES),
            id='background_refresh',
            name='Background Race Refresh',
            replace_existing=True
        )
        scheduler.start()
        logger.info(f"Background refresh scheduled every {settings.BACKGROUND_REFRESH_MINUTES} minutes")
    except Exception as e:
        logger.warning(f"Failed to start scheduler: {str(e)}")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown scheduler"""
    try:
        if scheduler.running:
            scheduler.shutdown()
        await racing_service.close()
        logger.info("Scheduler and racing service shut down")
    except Exception as e:
        logger.warning(f"Error during shutdown: {str(e)}")
