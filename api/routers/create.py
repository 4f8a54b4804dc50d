import logging

from errors import SongwriterError
from fastapi import APIRouter, Depends, HTTPException
from models import StyleDescription
from music_models import MUSIC_MODELS
from pydantic import BaseModel
from routers.common import get_session, http_error
from session import draft_to_dict

logger = logging.getLogger(__name__)
router = APIRouter()


class DraftUpdate(BaseModel):
    title: str | None = None
    lyrics: str | None = None
    music_description: StyleDescription | None = None


class RenderStart(BaseModel):
    duration_s: int = 60


class ModelChoice(BaseModel):
    model: str


@router.get("/models")
def list_models():
    return {"models": [m.to_dict() for m in MUSIC_MODELS.values()]}


@router.get("/session")
def get_session_state(session=Depends(get_session)):
    return session.snapshot()


@router.post("/session/reset")
def reset_session(session=Depends(get_session)):
    session.reset()
    return session.snapshot()


@router.put("/session/model")
def select_model(choice: ModelChoice, session=Depends(get_session)):
    try:
        session.select_model(choice.model)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"model": session.model}


@router.post("/draft")
def generate_draft(session=Depends(get_session)):
    """Write lyrics, style and album art from the finished recording."""
    try:
        draft = session.generate_draft()
    except SongwriterError as e:
        raise http_error(e)
    return draft_to_dict(draft)


@router.get("/draft")
def get_draft(session=Depends(get_session)):
    if session.draft is None:
        raise HTTPException(404, "No song draft yet")
    return draft_to_dict(session.draft)


@router.put("/draft")
def update_draft(update: DraftUpdate, session=Depends(get_session)):
    if update.lyrics is not None and not update.lyrics.strip():
        raise HTTPException(400, "Lyrics cannot be empty")
    if update.title is not None and not update.title.strip():
        raise HTTPException(400, "Title cannot be empty")
    try:
        draft = session.update_draft(
            lyrics=update.lyrics,
            style=update.music_description,
            title=update.title.strip()[:200] if update.title else None,
        )
    except SongwriterError as e:
        raise http_error(e)
    return draft_to_dict(draft)


@router.post("/render")
def start_render(req: RenderStart, session=Depends(get_session)):
    """Submit the draft for rendering. Poll GET /render for progress."""
    try:
        task = session.start_render(req.duration_s)
    except SongwriterError as e:
        raise http_error(e)
    return task.snapshot()


@router.get("/render")
def get_render(session=Depends(get_session)):
    status = session.render_status()
    if status is None:
        raise HTTPException(404, "No song is being created")
    return status
