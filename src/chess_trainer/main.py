import asyncio
import logging
import random
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from chess_trainer.config import Settings
from chess_trainer.difficulty import DIFFICULTY_BANDS
from chess_trainer.generator import PuzzleGenerator
from chess_trainer.puzzles import PuzzleDB
from chess_trainer.storage import ProgressStore
from chess_trainer.traps import TrapEngine
from chess_trainer.training import TrainingManager

logger = logging.getLogger(__name__)

settings = Settings()
logging.getLogger("chess_trainer").setLevel(settings.log_level.upper())

# --- Initialization status tracking ---

_init_status: dict[str, dict] = {
    "puzzles": {"state": "pending", "detail": ""},
}


def _set_status(task: str, state: str, detail: str = "") -> None:
    _init_status[task] = {"state": state, "detail": detail}


def _all_done() -> bool:
    return all(t["state"] in ("done", "failed") for t in _init_status.values())


# --- Service instances ---

rng = random.Random(settings.random_seed)
traps = TrapEngine(rng=rng)
puzzle_db = PuzzleDB(db_path=settings.puzzle_db_path, rng=rng)
generator = PuzzleGenerator(
    traps=traps,
    rng=rng,
    include_traps=settings.include_traps,
    trap_frequency=settings.trap_frequency,
)
trainer = TrainingManager(
    generator,
    store=ProgressStore(settings.progress_dir),
    traps=traps,
    rng=rng,
    include_traps=settings.include_traps,
    trap_frequency=settings.trap_frequency,
)


# --- Background initialization tasks ---

async def _init_puzzles() -> None:
    db_path = settings.puzzle_db_path
    if not Path(db_path).exists():
        _set_status("puzzles", "done", "Puzzle database not found, using built-in puzzles")
        return

    _set_status("puzzles", "running", "Opening puzzle database...")
    try:
        await puzzle_db.start()
        _set_status("puzzles", "done", f"Puzzle database ready ({await puzzle_db.count():,} puzzles)")
    except Exception as e:
        logger.error("Puzzle init failed: %s", e)
        _set_status("puzzles", "failed", str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(_init_puzzles())
    yield
    task.cancel()
    await puzzle_db.close()


app = FastAPI(title="Chess Tactics Trainer", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(status_code=422, content={"error": message})


# --- Request models ---

class PuzzlesRequest(BaseModel):
    difficulty: str | None = None
    count: int = 1
    theme: str | None = None


class SessionRequest(BaseModel):
    user_id: str


class StartPuzzleRequest(BaseModel):
    user_id: str
    theme: str | None = None
    difficulty: str | None = None
    puzzle_id: str | None = None


class MoveRequest(BaseModel):
    user_id: str
    move: str


class ImportRequest(BaseModel):
    data: str


# --- Endpoints ---

@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/status")
async def status():
    return {
        "ready": _all_done(),
        "tasks": _init_status,
        "puzzle_db": puzzle_db.available,
    }


@app.post("/api/puzzles")
async def puzzles(req: PuzzlesRequest):
    difficulty = req.difficulty or settings.default_difficulty
    if difficulty not in DIFFICULTY_BANDS:
        raise HTTPException(status_code=400, detail=f"Unknown difficulty: {difficulty}")
    if req.count < 1:
        raise HTTPException(status_code=400, detail="count must be at least 1")
    count = min(req.count, settings.max_puzzles_per_request)

    found = []
    if puzzle_db.available:
        themes = [req.theme] if req.theme else None
        found = await puzzle_db.get_random(themes=themes, difficulty=difficulty, limit=count)
    if not found:
        found = [generator.generate_puzzle(req.theme, difficulty) for _ in range(count)]
    return {"puzzles": [p.to_dict() for p in found]}


@app.post("/api/session/new")
async def new_session(req: SessionRequest):
    try:
        session = trainer.open_session(req.user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "user_id": req.user_id,
        "rating": session.tracker.rating,
        "level": session.tracker.skill.profile.current_level,
    }


@app.post("/api/puzzle/start")
async def puzzle_start(req: StartPuzzleRequest):
    puzzle = None
    if req.puzzle_id:
        if not puzzle_db.available:
            raise HTTPException(status_code=503, detail="Puzzle database not available")
        puzzle = await puzzle_db.get_by_id(req.puzzle_id)
        if puzzle is None:
            raise HTTPException(status_code=404, detail="Puzzle not found")
    try:
        return trainer.start_puzzle(req.user_id, theme=req.theme, difficulty=req.difficulty, puzzle=puzzle)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/puzzle/move")
async def puzzle_move(req: MoveRequest):
    try:
        return trainer.move(req.user_id, req.move)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _session_action(action, user_id: str):
    try:
        return action(user_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/puzzle/hint")
async def puzzle_hint(req: SessionRequest):
    return _session_action(trainer.hint, req.user_id)


@app.post("/api/puzzle/reset")
async def puzzle_reset(req: SessionRequest):
    return _session_action(trainer.reset, req.user_id)


@app.post("/api/puzzle/abandon")
async def puzzle_abandon(req: SessionRequest):
    return _session_action(trainer.abandon, req.user_id)


@app.get("/api/progress/{user_id}")
async def progress(user_id: str):
    return _session_action(trainer.progress, user_id)


@app.get("/api/progress/{user_id}/export")
async def progress_export(user_id: str):
    return {"user_id": user_id, "data": _session_action(trainer.export_progress, user_id)}


@app.post("/api/progress/{user_id}/import")
async def progress_import(user_id: str, req: ImportRequest):
    imported = _session_action(lambda uid: trainer.import_progress(uid, req.data), user_id)
    if not imported:
        raise HTTPException(status_code=400, detail="Progress data could not be imported")
    return {"imported": True}


@app.get("/api/lesson/{user_id}")
async def lesson(user_id: str):
    return _session_action(trainer.lesson, user_id)
