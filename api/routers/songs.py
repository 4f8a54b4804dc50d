import logging

import repository
from errors import SongwriterError
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from models import SavedSong
from routers.common import get_session, http_error
from session import draft_to_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/songs")


def _song_to_dict(song: SavedSong) -> dict:
    return {
        "id": song.id,
        "title": song.title,
        "lyrics": song.lyrics,
        "music_description": song.style.model_dump(),
        "album_art_url": song.cover_art_url,
        "has_audio": bool(song.audio),
        "audio_url": f"/songs/{song.id}/audio" if song.audio else None,
        "audio_mime_type": song.audio_mime_type,
        "model": song.model,
        "created_at": song.created_at,
    }


@router.get("")
def list_songs():
    """All saved songs, newest first."""
    try:
        songs = repository.list_songs()
    except SongwriterError as e:
        raise http_error(e)
    return {"songs": [_song_to_dict(s) for s in songs]}


def _load(song_id: int) -> SavedSong:
    try:
        song = repository.get_song(song_id)
    except SongwriterError as e:
        raise http_error(e)
    if song is None:
        raise HTTPException(404, "Song not found")
    return song


@router.get("/{song_id}")
def get_song(song_id: int):
    return _song_to_dict(_load(song_id))


@router.get("/{song_id}/audio")
def get_song_audio(song_id: int):
    song = _load(song_id)
    if not song.audio:
        raise HTTPException(404, "Song has no audio")
    return Response(content=song.audio, media_type=song.audio_mime_type)


@router.delete("/{song_id}")
def delete_song(song_id: int):
    try:
        repository.delete_song(song_id)
    except SongwriterError as e:
        raise http_error(e)
    return {"ok": True}


@router.post("/{song_id}/open")
def open_song(song_id: int, session=Depends(get_session)):
    """Load a saved song back into the editor."""
    try:
        draft = session.open_saved_song(song_id)
    except SongwriterError as e:
        raise http_error(e)
    return draft_to_dict(draft)
