import base64
import binascii
import json
import logging
import sqlite3
from datetime import datetime, timezone

from database import db
from errors import PersistenceFailed
from models import SavedSong, StyleDescription
from pydantic import ValidationError

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _encode_audio(audio: bytes) -> str:
    return base64.b64encode(audio).decode("ascii")


def _decode_audio(value: str | None) -> bytes:
    if not value:
        return b""
    # Rows written by the browser front end carry a data: URL prefix
    if value.startswith("data:"):
        value = value.split(",", 1)[1]
    return base64.b64decode(value, validate=True)


def _row_to_song(row) -> SavedSong:
    try:
        style = StyleDescription.model_validate(json.loads(row["music_description"]))
        audio = _decode_audio(row["audio_data"])
    except (ValueError, ValidationError, binascii.Error) as e:
        raise PersistenceFailed(f"Song {row['id']} is stored in an unreadable format") from e
    return SavedSong(
        id=row["id"],
        title=row["title"],
        lyrics=row["lyrics"],
        style=style,
        cover_art_url=row["album_art_url"],
        audio=audio,
        audio_mime_type=row["audio_mime_type"] or "audio/mpeg",
        model=row["model"],
        created_at=row["created_at"],
    )


def save_song(song: SavedSong) -> int:
    """Insert a song and return its new id. The caller's object is not modified."""
    if not song.audio:
        raise PersistenceFailed(f"Song {song.title!r} has no audio and cannot be saved.")
    created_at = song.created_at or _now()
    try:
        with db() as conn:
            cur = conn.execute(
                """
                INSERT INTO songs (title, lyrics, music_description, album_art_url,
                                   audio_data, audio_mime_type, model, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    song.title,
                    song.lyrics,
                    json.dumps(song.style.model_dump()),
                    song.cover_art_url,
                    _encode_audio(song.audio),
                    song.audio_mime_type,
                    song.model,
                    created_at,
                ),
            )
            song_id = cur.lastrowid
    except sqlite3.Error as e:
        logger.error(f"Failed to save song {song.title!r}: {e}", exc_info=True)
        raise PersistenceFailed("Could not save the song. Please try again.") from e

    logger.info(f"Saved song {song_id}: {song.title!r} ({len(song.audio)} audio bytes)")
    return song_id


def list_songs() -> list[SavedSong]:
    """All songs, newest first."""
    try:
        with db() as conn:
            rows = conn.execute("SELECT * FROM songs ORDER BY created_at DESC, id DESC").fetchall()
    except sqlite3.Error as e:
        logger.error(f"Failed to list songs: {e}", exc_info=True)
        raise PersistenceFailed("Could not load your songs.") from e
    return [_row_to_song(r) for r in rows]


def get_song(song_id: int) -> SavedSong | None:
    try:
        with db() as conn:
            row = conn.execute("SELECT * FROM songs WHERE id=?", (song_id,)).fetchone()
    except sqlite3.Error as e:
        logger.error(f"Failed to load song {song_id}: {e}", exc_info=True)
        raise PersistenceFailed("Could not load the song.") from e
    if not row:
        return None
    return _row_to_song(row)


def delete_song(song_id: int) -> None:
    """Delete a song. Deleting an id that does not exist is a no-op."""
    try:
        with db() as conn:
            cur = conn.execute("DELETE FROM songs WHERE id=?", (song_id,))
    except sqlite3.Error as e:
        logger.error(f"Failed to delete song {song_id}: {e}", exc_info=True)
        raise PersistenceFailed("Could not delete the song.") from e
    if cur.rowcount:
        logger.info(f"Deleted song: {song_id}")
    else:
        logger.info(f"Delete of unknown song {song_id} ignored")
