"""The songwriting view model: recording, drafting, rendering and saving.

One session serves the single user of the app. Only one render is live at a
time; starting another, or resetting, cancels the previous one's token so its
polling stops and whatever it produces is discarded.
"""

import dataclasses
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import repository
from errors import InvalidStateTransition, NotFound, RenderFailed, SongwriterError
from generator import SongDraftGenerator
from models import JobStatus, RenderJob, SavedSong, SongDraft, StyleDescription
from music_models import DEFAULT_MODEL, get_model
from recorder import STOPPED, Recorder
from renderer import CancelToken, MusicRenderer, RenderRequest, build_style_tags, structure_lyrics

logger = logging.getLogger(__name__)

SUBMITTING = "submitting"
SAVING = "saving"
SAVED = "saved"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _spawn_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True, name="render-worker").start()


def draft_to_dict(draft: SongDraft) -> dict:
    return {
        "title": draft.title,
        "lyrics": draft.lyrics,
        "music_description": draft.style.model_dump(),
        "album_art_url": draft.cover_art_url,
    }


@dataclasses.dataclass
class RenderTask:
    id: str
    model: str
    duration_s: int
    token: CancelToken
    started_at: str
    job: Optional[RenderJob] = None
    error: Optional[str] = None
    song_id: Optional[int] = None
    finished_at: Optional[str] = None

    @property
    def status(self) -> str:
        if self.song_id is not None:
            return SAVED
        if self.error is not None:
            # A job that succeeded but whose audio never arrived still failed overall
            if self.job is not None and self.job.status != JobStatus.SUCCEEDED:
                return self.job.status
            return JobStatus.FAILED
        if self.job is None:
            return SUBMITTING
        if self.job.status == JobStatus.SUCCEEDED:
            return SAVING
        return self.job.status

    @property
    def done(self) -> bool:
        return self.song_id is not None or self.error is not None

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "model": self.model,
            "duration_s": self.duration_s,
            "status": self.status,
            "job_status": self.job.status if self.job else None,
            "done": self.done,
            "job_id": self.job.id if self.job else None,
            "error": self.error,
            "song_id": self.song_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class SongwriterSession:
    def __init__(
        self,
        recorder: Recorder,
        generator: SongDraftGenerator,
        renderer: MusicRenderer,
        songs=repository,
        model: str = DEFAULT_MODEL,
        spawn: Callable[[Callable[[], None]], None] = _spawn_thread,
    ):
        self.recorder = recorder
        self.generator = generator
        self.renderer = renderer
        self.songs = songs
        self.model = get_model(model).id
        self._spawn = spawn
        self._lock = threading.RLock()
        self.draft: Optional[SongDraft] = None
        self.error: Optional[str] = None
        self.generating = False
        self.render: Optional[RenderTask] = None
        self.opened_song_id: Optional[int] = None
        # Bumped whenever the draft view is replaced, so late drafts are dropped
        self._draft_generation = 0

    # Recording

    def start_recording(self) -> None:
        self.recorder.start()

    def pause_recording(self) -> None:
        self.recorder.pause()

    def resume_recording(self) -> None:
        self.recorder.resume()

    def append_chunk(self, chunk: bytes, mime_type: Optional[str] = None) -> None:
        self.recorder.feed(chunk, mime_type)

    def stop_recording(self) -> None:
        self.recorder.stop()

    def discard_recording(self) -> None:
        self.recorder.discard()

    # Drafting

    def _cancel_render(self) -> None:
        if self.render:
            if not self.render.done:
                logger.info(f"Cancelling render {self.render.id}")
            self.render.token.cancel()
        self.render = None

    def generate_draft(self) -> SongDraft:
        with self._lock:
            if self.generating:
                raise InvalidStateTransition("generate a song", "already generating")
            clip = self.recorder.audio
            if self.recorder.state != STOPPED or clip is None:
                raise InvalidStateTransition("generate a song", f"recorder is {self.recorder.state}")
            self._cancel_render()
            self.draft = None
            self.error = None
            self.opened_song_id = None
            self.generating = True
            self._draft_generation += 1
            generation = self._draft_generation

        try:
            draft = self.generator.generate(clip)
        except SongwriterError as e:
            with self._lock:
                if generation == self._draft_generation:
                    self.error = e.message
                    self.generating = False
            raise
        except Exception as e:
            logger.error(f"Draft generation crashed: {e}", exc_info=True)
            with self._lock:
                if generation == self._draft_generation:
                    self.error = "An unknown error occurred during generation."
                    self.generating = False
            raise

        with self._lock:
            if generation != self._draft_generation:
                logger.info("Draft finished after the session moved on; discarding it")
                raise InvalidStateTransition("keep the draft", "the session has moved on")
            self.draft = draft
            self.generating = False
            # The draft supersedes the take it was written from
            self.recorder.hand_off(clip)
        return draft

    def update_draft(
        self,
        lyrics: Optional[str] = None,
        style: Optional[StyleDescription] = None,
        title: Optional[str] = None,
    ) -> SongDraft:
        with self._lock:
            if self.draft is None:
                raise InvalidStateTransition("edit the song", "no draft exists")
            changes = {}
            if lyrics is not None:
                changes["lyrics"] = lyrics
            if style is not None:
                changes["style"] = style
            if title is not None:
                changes["title"] = title
            self.draft = dataclasses.replace(self.draft, **changes)
            return self.draft

    def select_model(self, model_id: str) -> None:
        with self._lock:
            self.model = get_model(model_id).id
        logger.info(f"Music model set to {self.model}")

    # Rendering

    def start_render(self, duration_s: int = 60) -> RenderTask:
        with self._lock:
            if self.draft is None:
                raise InvalidStateTransition("create the song", "no draft exists")
            draft = self.draft
            request = RenderRequest(
                lyrics=structure_lyrics(draft.lyrics),
                style_tags=build_style_tags(draft.style),
                duration_s=duration_s,
                model=self.model,
            )
            # Reject bad input before anything is submitted
            self.renderer.build_request(request)

            self._cancel_render()
            task = RenderTask(
                id=str(uuid.uuid4()),
                model=self.model,
                duration_s=duration_s,
                token=CancelToken(),
                started_at=_now(),
            )
            self.render = task
            self.opened_song_id = None

        logger.info(f"Render {task.id} queued with {task.model}, {duration_s}s")
        self._spawn(lambda: self._run_render(task, request, draft))
        return task

    def _is_current(self, task: RenderTask) -> bool:
        return self.render is task and not task.token.cancelled

    def _run_render(self, task: RenderTask, request: RenderRequest, draft: SongDraft) -> None:
        try:
            job = self.renderer.submit(request)
            with self._lock:
                task.job = job
            self.renderer.wait(job, task.token)
            audio, mime_type = self.renderer.fetch_output(job)

            with self._lock:
                if not self._is_current(task):
                    logger.info(f"Render {task.id} finished after being replaced; discarding result")
                    return
                if job.status != JobStatus.SUCCEEDED or not audio:
                    raise RenderFailed("Music generation did not produce any audio.")
                song = SavedSong(
                    id=None,
                    title=draft.title,
                    lyrics=draft.lyrics,
                    style=draft.style,
                    cover_art_url=draft.cover_art_url,
                    audio=audio,
                    audio_mime_type=mime_type,
                    model=task.model,
                )
                task.song_id = self.songs.save_song(song)
                task.finished_at = _now()
            logger.info(f"Render {task.id} saved as song {task.song_id}")

        except SongwriterError as e:
            logger.error(f"Render {task.id} failed: {e.message}", exc_info=True)
            with self._lock:
                task.error = e.message
                task.finished_at = _now()
        except Exception as e:
            logger.error(f"Render {task.id} crashed: {e}", exc_info=True)
            with self._lock:
                task.error = "An unknown error occurred while creating the song."
                task.finished_at = _now()

    def render_status(self) -> Optional[dict]:
        with self._lock:
            return self.render.snapshot() if self.render else None

    # Library

    def open_saved_song(self, song_id: int) -> SongDraft:
        song = self.songs.get_song(song_id)
        if song is None:
            raise NotFound(f"Song {song_id} not found")
        with self._lock:
            self._cancel_render()
            self.recorder.discard()
            self._draft_generation += 1
            self.generating = False
            self.draft = SongDraft(
                title=song.title,
                lyrics=song.lyrics,
                style=song.style,
                cover_art_url=song.cover_art_url,
            )
            self.error = None
            self.opened_song_id = song.id
            return self.draft

    def reset(self) -> None:
        """Start a new song: stop polling, release the microphone and clear the draft."""
        with self._lock:
            self._cancel_render()
            self.recorder.discard()
            self._draft_generation += 1
            self.generating = False
            self.draft = None
            self.error = None
            self.opened_song_id = None
        logger.info("Session reset")

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "recording": self.recorder.snapshot(),
                "generating": self.generating,
                "draft": draft_to_dict(self.draft) if self.draft else None,
                "model": self.model,
                "render": self.render.snapshot() if self.render else None,
                "opened_song_id": self.opened_song_id,
                "error": self.error,
            }
