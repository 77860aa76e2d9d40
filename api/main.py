"""
FastAPI Web Service for the Activity Duel Recommender

Provides RESTful endpoints for:
- Starting a duel session from a set of context tags
- Resolving duels and getting the next pair
- Session monitoring
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional
import logging
from datetime import datetime

from config.settings import get_settings
from services.catalog_client import CatalogClient, CatalogError
from services.duel_controller import DuelController
from services.embedding_cache import EmbeddingCache
from services.session_manager import SessionManager, SessionNotFound
from utils import validate_tag_selection

# Configure logging
_settings = get_settings()
logging.basicConfig(
    level=getattr(logging, _settings.log_level.upper(), logging.INFO),
    filename=_settings.log_file,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Activity Duel Recommender API",
    description="Real-time activity recommendations from pairwise choices",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global session manager instance
session_manager = None


# Pydantic models for request/response
class StartSessionRequest(BaseModel):
    tags: List[str] = Field(..., description="Active context tags (weather, time, season, intensity, mood)")


class ChoiceRequest(BaseModel):
    winner: Literal['left', 'right'] = Field(..., description="Slot of the chosen activity")
    winner_id: Optional[Any] = Field(None, description="Id of the chosen activity, used to detect stale choices")


class DuelResponse(BaseModel):
    session_id: str
    state: str
    can_duel: bool
    left: Optional[Dict[str, Any]] = None
    right: Optional[Dict[str, Any]] = None
    pool_size: int
    replenishing: bool
    timestamp: datetime


def build_session_manager() -> SessionManager:
    """Create the session manager from the current settings."""
    settings = get_settings()
    config = settings.to_duel_config()
    return SessionManager(
        CatalogClient(config.catalog),
        config,
        embedding_cache=EmbeddingCache.from_settings(settings),
        max_sessions=settings.max_sessions
    )


# Dependency to get session manager
def get_session_manager() -> SessionManager:
    global session_manager
    if session_manager is None:
        session_manager = build_session_manager()
    return session_manager


def get_controller(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> DuelController:
    try:
        return manager.get_session(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")


def duel_response(controller: DuelController) -> DuelResponse:
    duel = controller.duel
    return DuelResponse(
        session_id=controller.session_id,
        state=controller.state.value,
        can_duel=controller.can_duel,
        left=duel.left.to_dict() if duel.left else None,
        right=duel.right.to_dict() if duel.right else None,
        pool_size=len(controller.pool),
        replenishing=controller.is_replenishing,
        timestamp=datetime.now()
    )


@app.on_event("startup")
async def startup_event():
    """Initialize the session manager on startup."""
    global session_manager
    try:
        if session_manager is None:
            session_manager = build_session_manager()
        logger.info("Session manager initialised successfully")
    except Exception as e:
        logger.error(f"Failed to initialise session manager: {e}")
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel background work of all live sessions."""
    if session_manager is not None:
        await session_manager.close_all()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "message": "Activity Duel Recommender API",
        "version": "1.0.0",
        "status": "healthy",
        "timestamp": datetime.now()
    }


@app.post("/sessions", response_model=DuelResponse)
async def start_session(
    request: StartSessionRequest,
    manager: SessionManager = Depends(get_session_manager)
):
    """
    Start a duel session.

    Fetches the first batch of candidates and the base model for the tags,
    seeds the session model and returns the first duel.
    """
    tag_rules = manager.config.tags
    errors = validate_tag_selection(request.tags, tag_rules.min_tags, tag_rules.max_tags)
    if errors:
        raise HTTPException(status_code=422, detail=errors)

    try:
        controller = await manager.start_session(request.tags)
    except CatalogError as e:
        logger.error(f"Error starting session: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to start session: {str(e)}")

    logger.info(f"Started session {controller.session_id} with {len(controller.pool)} candidates")
    return duel_response(controller)


@app.get("/sessions/{session_id}/duel", response_model=DuelResponse)
async def get_duel(controller: DuelController = Depends(get_controller)):
    """Get the duel currently presented in a session."""
    return duel_response(controller)


@app.post("/sessions/{session_id}/choice", response_model=DuelResponse)
async def submit_choice(
    request: ChoiceRequest,
    controller: DuelController = Depends(get_controller)
):
    """
    Resolve the current duel.

    The session model learns from the winner immediately; the base model
    is notified in the background. Stale choices are ignored.
    """
    await controller.resolve_choice(request.winner, request.winner_id)
    return duel_response(controller)


@app.post("/sessions/{session_id}/replenish", response_model=DuelResponse)
async def replenish(controller: DuelController = Depends(get_controller)):
    """Ask for more candidates, e.g. after a failed refill."""
    controller.request_replenishment()
    return duel_response(controller)


@app.get("/sessions/{session_id}")
async def get_session_statistics(controller: DuelController = Depends(get_controller)):
    """Get statistics for one session."""
    return controller.get_statistics()


@app.delete("/sessions/{session_id}")
async def end_session(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    """Discard a session and its model."""
    if not await manager.end_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {
        "success": True,
        "message": f"Session {session_id} ended",
        "timestamp": datetime.now()
    }


@app.get("/health")
async def health_check():
    """Comprehensive health check endpoint."""
    try:
        manager = get_session_manager()
        metrics = manager.get_metrics()

        return {
            "status": "healthy",
            "active_sessions": metrics['active_sessions'],
            "sessions_started": metrics['sessions_started'],
            "timestamp": datetime.now()
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now()
        }


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
