import logging

from errors import SongwriterError
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from routers.common import get_session, http_error

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/recording")


def _run(action, session):
    try:
        action()
    except SongwriterError as e:
        raise http_error(e)
    return session.recorder.snapshot()


@router.get("")
def get_recording(session=Depends(get_session)):
    return session.recorder.snapshot()


@router.post("/start")
def start(session=Depends(get_session)):
    return _run(session.start_recording, session)


@router.post("/pause")
def pause(session=Depends(get_session)):
    return _run(session.pause_recording, session)


@router.post("/resume")
def resume(session=Depends(get_session)):
    return _run(session.resume_recording, session)


@router.post("/stop")
def stop(session=Depends(get_session)):
    return _run(session.stop_recording, session)


@router.post("/discard")
def discard(session=Depends(get_session)):
    return _run(session.discard_recording, session)


@router.post("/chunk")
async def upload_chunk(file: UploadFile = File(...), session=Depends(get_session)):
    """Append a MediaRecorder chunk to the recording in progress."""
    chunk = await file.read()
    if not chunk:
        raise HTTPException(400, "Empty audio chunk")
    try:
        session.append_chunk(chunk, file.content_type)
    except SongwriterError as e:
        raise http_error(e)
    return session.recorder.snapshot()


@router.get("/audio")
def get_audio(session=Depends(get_session)):
    """Play back the finished take."""
    clip = session.recorder.audio
    if clip is None:
        raise HTTPException(404, "No finished recording")
    return Response(content=clip.data, media_type=clip.mime_type)
