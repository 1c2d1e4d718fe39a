"""FastAPI server for the drill gauntlet."""

import asyncio
import logging
import os

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from typing import Optional

logger = logging.getLogger(__name__)

from core.config import DEFAULT_MODE, MODES
from core.errors import GauntletError, GenerationError, RouletteError, SessionError
from core.interfaces import AIProvider, Storage
from core.models import ProfileBook
from core.orchestrator import SessionOrchestrator
from core.rating import rank_for
from core.roulette import quick_roulette_kind

from server.gemini_provider import GeminiProvider
from server.file_storage import FileStorage
from server.postgres_storage import PostgresStorage


# Pydantic models for API
class UserRequest(BaseModel):
    user_id: str = "default"


class StartSessionRequest(BaseModel):
    user_id: str = "default"
    mode: str = DEFAULT_MODE
    tier: Optional[int] = None


class NextDrillRequest(BaseModel):
    user_id: str = "default"
    forced_kind: Optional[str] = None  # Debug trigger
    quick_roulette: bool = False


class SubmitRequest(BaseModel):
    user_id: str = "default"
    answer: str


class WagerRequest(BaseModel):
    user_id: str = "default"
    tier: str


class DoubleDownRequest(BaseModel):
    user_id: str = "default"
    accept: bool


class ChamberRequest(BaseModel):
    user_id: str = "default"
    index: int


class SpinRequest(BaseModel):
    user_id: str = "default"
    forced_index: Optional[int] = None


class ProfileResponse(BaseModel):
    user_id: str
    profiles: dict
    ranks: dict
    last_practice: Optional[float]


# Global state (in production, use proper DI)
storage: Storage = None
ai_provider: AIProvider = None
sessions: dict[str, SessionOrchestrator] = {}


app = FastAPI(title="Drill Gauntlet API", description="Language drills with an Elo rating and boss encounters")


def to_http_error(e: Exception) -> HTTPException:
    """Map core errors onto HTTP status codes."""
    if isinstance(e, GenerationError):
        return HTTPException(status_code=502, detail=f"Drill service failed: {e}")
    if isinstance(e, SessionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (RouletteError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=f"Internal error: {type(e).__name__}: {str(e)}")


def get_session(user_id: str) -> SessionOrchestrator:
    orchestrator = sessions.get(user_id)
    if orchestrator is None or orchestrator.closed:
        raise HTTPException(status_code=404, detail=f"No active session for {user_id}")
    return orchestrator


def get_roulette(user_id: str):
    roulette = get_session(user_id).roulette
    if roulette is None:
        raise HTTPException(status_code=409, detail="No roulette in progress")
    return roulette


@app.on_event("startup")
async def startup():
    """Initialize storage and AI provider on startup."""
    global storage, ai_provider

    if storage is None:
        # Use PostgreSQL by default, set GAUNTLET_STORAGE=file to use file storage
        storage_type = os.environ.get('GAUNTLET_STORAGE', 'postgres')
        if storage_type == 'file':
            storage = FileStorage()
            logger.info("Using file storage")
        else:
            storage = PostgresStorage()
            logger.info("Using PostgreSQL storage")

    if ai_provider is None:
        # Get API key from environment variable first, then fall back to config file
        api_key = os.environ.get('GEMINI_API_KEY')
        if not api_key:
            try:
                config = storage.load_config()
                api_key = config.get('gemini_api_key')
            except FileNotFoundError:
                pass

        if not api_key:
            raise RuntimeError(
                "GEMINI_API_KEY environment variable not set and config file not found. "
                "Set GEMINI_API_KEY or create ~/.config/gauntlet/config.json"
            )
        ai_provider = GeminiProvider(api_key, model_name='gemini-2.0-flash', storage=storage)
        logger.info("AI provider initialized: gemini-2.0-flash")


@app.on_event("shutdown")
async def shutdown():
    """Close every live session so queued profile writes are flushed, then the storage."""
    for user_id in list(sessions):
        await sessions.pop(user_id).close()
    if hasattr(storage, 'close'):
        storage.close()
        logger.info("Storage connection closed")


# User Endpoints
@app.get("/api/users")
async def list_users():
    """List all users with a stored profile."""
    loop = asyncio.get_event_loop()
    users = await loop.run_in_executor(None, storage.list_users)
    return {"users": users}


@app.get("/api/users/{user_id}/exists")
async def check_user_exists(user_id: str):
    loop = asyncio.get_event_loop()
    exists = await loop.run_in_executor(None, storage.user_exists, user_id)
    return {"exists": exists}


@app.get("/api/profile", response_model=ProfileResponse)
async def get_profile(user_id: str = "default"):
    """Stored ratings for every mode, with rank progress."""
    orchestrator = sessions.get(user_id)
    if orchestrator and not orchestrator.closed:
        book = orchestrator.book
    else:
        loop = asyncio.get_event_loop()
        book = ProfileBook.from_dict(await loop.run_in_executor(None, storage.load_state, user_id))
    data = book.to_dict()
    return ProfileResponse(
        user_id=user_id,
        profiles=data['profiles'],
        ranks={mode: rank_for(book.get(mode).rating) for mode in MODES},
        last_practice=data['last_practice']
    )


@app.get("/api/stats")
async def get_stats():
    """API usage stats for the drill service."""
    if hasattr(ai_provider, 'get_stats'):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, ai_provider.get_stats)
    return {}


# Session Endpoints
@app.post("/api/session")
async def start_session(request: StartSessionRequest):
    """Start (or restart) a drill session for a user."""
    previous = sessions.pop(request.user_id, None)
    if previous:
        await previous.close()
    try:
        orchestrator = SessionOrchestrator(ai_provider, storage, user_id=request.user_id,
                                           mode=request.mode, tier=request.tier)
        await orchestrator.start()
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    sessions[request.user_id] = orchestrator
    return orchestrator.to_dict()


@app.get("/api/session")
async def get_snapshot(user_id: str = "default"):
    return get_session(user_id).to_dict()


@app.delete("/api/session")
async def end_session(user_id: str = "default"):
    orchestrator = get_session(user_id)
    await orchestrator.close()
    sessions.pop(user_id, None)
    return {"closed": True, "profile": orchestrator.snapshot.profile.to_dict()}


@app.get("/api/rank")
async def get_rank(user_id: str = "default"):
    return get_session(user_id).rank()


@app.post("/api/drill")
async def next_drill(request: NextDrillRequest):
    """Generate the next drill. A newer request supersedes an older one."""
    orchestrator = get_session(request.user_id)
    forced_kind = request.forced_kind
    if request.quick_roulette:
        forced_kind = quick_roulette_kind(orchestrator.rng)
    try:
        drill = await orchestrator.next_drill(forced_kind)
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    if drill is None:
        raise HTTPException(status_code=409, detail="Drill request was superseded")
    return {"drill": drill.to_dict(), "session": orchestrator.to_dict()}


@app.post("/api/submit")
async def submit(request: SubmitRequest):
    orchestrator = get_session(request.user_id)
    try:
        outcome = await orchestrator.submit(request.answer)
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    return {
        "outcome": outcome.to_dict() if outcome else None,
        "session": orchestrator.to_dict()
    }


@app.post("/api/encounter/acknowledge")
async def acknowledge_intro(request: UserRequest):
    orchestrator = get_session(request.user_id)
    try:
        orchestrator.acknowledge_intro()
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    return orchestrator.to_dict()


@app.post("/api/wager")
async def choose_wager_tier(request: WagerRequest):
    orchestrator = get_session(request.user_id)
    try:
        orchestrator.choose_wager_tier(request.tier)
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    return orchestrator.to_dict()


@app.post("/api/double-down")
async def double_down(request: DoubleDownRequest):
    orchestrator = get_session(request.user_id)
    try:
        orchestrator.double_down(request.accept)
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    return orchestrator.to_dict()


# Roulette Endpoints
@app.post("/api/roulette")
async def open_roulette(request: UserRequest):
    orchestrator = get_session(request.user_id)
    try:
        roulette = orchestrator.open_roulette()
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    return roulette.to_dict()


@app.post("/api/roulette/load")
async def roulette_load(request: UserRequest):
    roulette = get_roulette(request.user_id)
    try:
        roulette.start_loading()
    except RouletteError as e:
        raise to_http_error(e)
    return roulette.to_dict()


@app.post("/api/roulette/toggle")
async def roulette_toggle(request: ChamberRequest):
    roulette = get_roulette(request.user_id)
    try:
        roulette.toggle_chamber(request.index)
    except RouletteError as e:
        raise to_http_error(e)
    return roulette.to_dict()


@app.post("/api/roulette/spin")
async def roulette_spin(request: SpinRequest):
    roulette = get_roulette(request.user_id)
    try:
        roulette.spin(request.forced_index)
    except RouletteError as e:
        raise to_http_error(e)
    return roulette.to_dict()


@app.post("/api/roulette/advance")
async def roulette_advance(request: UserRequest):
    roulette = get_roulette(request.user_id)
    try:
        roulette.advance()
    except RouletteError as e:
        raise to_http_error(e)
    return roulette.to_dict()


@app.post("/api/roulette/fire")
async def roulette_fire(request: UserRequest):
    roulette = get_roulette(request.user_id)
    try:
        result = roulette.fire()
    except RouletteError as e:
        raise to_http_error(e)
    return {"result": result.to_dict(), "roulette": roulette.to_dict()}


@app.post("/api/roulette/finish")
async def roulette_finish(request: UserRequest):
    orchestrator = get_session(request.user_id)
    try:
        result = orchestrator.finish_roulette()
    except (GauntletError, ValueError) as e:
        raise to_http_error(e)
    return {"result": result.to_dict(), "session": orchestrator.to_dict()}
