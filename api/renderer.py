"""Music rendering through Replicate predictions.

A render is three steps: `submit` creates a prediction, `wait` polls it until
it reaches a terminal status (or the wall-clock budget runs out, or the
caller cancels), and `fetch_output` downloads the finished audio. Nothing is
retried; every failure is raised to the caller with the provider's message.
Abandoned predictions are left running on the provider side.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from errors import InvalidStateTransition, RenderCanceled, RenderFailed, RenderTimedOut
from models import JobStatus, RenderJob, StyleDescription
from music_models import ACE_STEP, MINIMAX, get_model

logger = logging.getLogger(__name__)

REPLICATE_API = "https://api.replicate.com/v1"
POLL_INTERVAL_S = 2.0
TIMEOUT_S = 300.0  # 5 minutes
HTTP_TIMEOUT_S = 60.0

MINIMAX_MAX_PARAGRAPHS = 4
MINIMAX_MAX_CHARS = 580
TRUNCATION_MARKER = "..."

# Replicate prediction status -> RenderJob status
PROVIDER_STATUS = {
    "starting": JobStatus.CREATED,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.CANCELED,
}

GENRE_TAGS = {
    "pop": "pop, catchy, mainstream, upbeat",
    "rock": "rock, guitar, drums, powerful",
    "hip hop": "hip-hop, rap, beats, urban",
    "electronic": "electronic, synthesizer, digital, modern",
    "folk / country": "folk, country, acoustic, traditional",
    "r&b / soul": "r&b, soul, smooth, rhythm",
    "jazz": "jazz, improvisation, saxophone, smooth",
    "orchestral": "orchestral, classical, symphony, grand",
    "kids / nursery rhyme": "kids, nursery-rhyme, children, playful",
    "ambient": "ambient, atmospheric, ethereal, calm",
    "classical": "classical, piano, strings, elegant",
    "reggae": "reggae, caribbean, relaxed, rhythmic",
}

MOOD_TAGS = {
    "happy": "happy, uplifting, cheerful, bright",
    "sad": "sad, melancholic, emotional, slow",
    "energetic": "energetic, high-energy, fast, dynamic",
    "relaxing": "relaxing, calm, peaceful, soothing",
    "romantic": "romantic, love, intimate, tender",
    "epic": "epic, cinematic, grand, powerful",
    "nostalgic": "nostalgic, memories, wistful, reflective",
    "sentimental": "sentimental, touching, emotional, heartfelt",
    "playful": "playful, fun, light-hearted, bouncy",
    "mysterious": "mysterious, dark, enigmatic, suspenseful",
    "hopeful": "hopeful, optimistic, inspiring, uplifting",
}


def build_style_tags(style: StyleDescription) -> str:
    genre = GENRE_TAGS.get(style.genre.lower(), style.genre.lower())
    mood = MOOD_TAGS.get(style.mood.lower(), style.mood.lower())
    return f"{genre}, {mood}, {style.arrangement.lower()}, {style.vocals.lower()} vocals"


def structure_lyrics(lyrics: str) -> str:
    """Give unstructured lyrics a verse and chorus so the model has sections to sing."""
    lowered = lyrics.lower()
    if "[verse" in lowered or "[chorus" in lowered:
        return lyrics
    lines = [line for line in lyrics.split("\n") if line.strip()]
    if not lines:
        return lyrics
    body = "\n".join(lines)
    return f"[verse]\n{body}\n\n[chorus]\n{body}"


def truncate_lyrics(
    lyrics: str,
    max_paragraphs: int = MINIMAX_MAX_PARAGRAPHS,
    max_chars: int = MINIMAX_MAX_CHARS,
    marker: str = TRUNCATION_MARKER,
) -> str:
    """Cut lyrics to the first paragraphs and a character bound, marking any cut."""
    paragraphs = lyrics.split("\n\n")
    truncated = "\n\n".join(paragraphs[:max_paragraphs])
    cut = len(paragraphs) > max_paragraphs
    if len(truncated) + (len(marker) if cut else 0) > max_chars:
        truncated = truncated[: max_chars - len(marker)]
        cut = True
    if cut:
        truncated = truncated.rstrip() + marker
    return truncated


class CancelToken:
    """Cooperative cancellation shared between a render and whoever started it.

    `sleep` replaces the real wait between polls, e.g. a fake clock's
    `advance`, so timeouts can be driven without wall-clock time.
    """

    def __init__(self, sleep: Optional[Callable[[float], None]] = None):
        self._event = threading.Event()
        self._sleep = sleep

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds. Returns True if cancelled meanwhile."""
        if self._sleep is not None:
            if not self._event.is_set():
                self._sleep(timeout)
            return self._event.is_set()
        return self._event.wait(timeout=timeout)


@dataclass
class RenderRequest:
    lyrics: str
    style_tags: str
    duration_s: int
    model: str


@dataclass
class RenderResult:
    job: RenderJob
    audio: bytes
    audio_mime_type: str


def _provider_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body.get("title") or response.reason_phrase)
    return response.reason_phrase or f"HTTP {response.status_code}"


def _json(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError as e:
        raise RenderFailed("Music service returned a response that is not JSON.") from e
    if not isinstance(body, dict):
        raise RenderFailed("Music service returned an unexpected response.")
    return body


class MusicRenderer:
    def __init__(
        self,
        api_token: str,
        client: Optional[httpx.Client] = None,
        poll_interval_s: float = POLL_INTERVAL_S,
        timeout_s: float = TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
        base_url: str = REPLICATE_API,
    ):
        self.api_token = api_token
        self.client = client or httpx.Client(timeout=HTTP_TIMEOUT_S, follow_redirects=True)
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self._clock = clock
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"}

    def build_request(self, request: RenderRequest) -> tuple[str, dict]:
        """Shape the provider request for the chosen model. Returns (url, body)."""
        try:
            model = get_model(request.model)
        except ValueError as e:
            raise RenderFailed(str(e)) from e
        if model.id == MINIMAX:
            lyrics = truncate_lyrics(request.lyrics)
            if lyrics != request.lyrics:
                logger.info(f"Lyrics truncated for {model.name}: {len(request.lyrics)} -> {len(lyrics)} chars")
            body = {"input": {"lyrics": lyrics, "prompt": request.style_tags}}
            return f"{self.base_url}/models/minimax/music-1.5/predictions", body

        if model.id == ACE_STEP:
            if request.duration_s not in model.duration_options:
                allowed = ", ".join(str(d) for d in model.duration_options)
                raise RenderFailed(f"{model.name} supports durations of {allowed} seconds, not {request.duration_s}.")
            body = {
                "version": model.version,
                "input": {
                    "lyrics": request.lyrics,
                    "tags": request.style_tags,
                    "duration": request.duration_s,
                    "tag_guidance_scale": 7,
                    "lyric_guidance_scale": 5,
                    "guidance_scale": 15,
                    "number_of_steps": 60,
                },
            }
            return f"{self.base_url}/predictions", body

        raise RenderFailed(f"No request profile for model {model.id!r}.")

    def _update_job(self, job: RenderJob, prediction: dict) -> None:
        raw_status = prediction.get("status")
        status = PROVIDER_STATUS.get(raw_status)
        if status is None:
            raise RenderFailed(f"Music provider reported an unknown status: {raw_status!r}")
        if status not in JobStatus.TERMINAL and JobStatus.RANK[status] < JobStatus.RANK[job.status]:
            # Stale read from the provider; keep the furthest status seen
            logger.debug(f"Render job {job.id} reported {raw_status} after {job.status}; ignoring")
        else:
            try:
                job.advance(status)
            except InvalidStateTransition as e:
                raise RenderFailed(f"Music provider reported {raw_status!r} for a job already {job.status}.") from e
        if prediction.get("error"):
            job.error_detail = str(prediction["error"])
        output = prediction.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if output:
            job.output_url = str(output)

    def submit(self, request: RenderRequest) -> RenderJob:
        url, body = self.build_request(request)
        logger.info(f"Submitting render to {request.model} ({len(request.lyrics)} chars of lyrics)")
        try:
            response = self.client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"Render submission failed: {e}", exc_info=True)
            raise RenderFailed(f"Could not reach the music service ({e}).") from e
        if response.is_error:
            raise RenderFailed(f"Failed to start music generation: {_provider_error(response)}")

        prediction = _json(response)
        try:
            job = RenderJob(id=prediction["id"], model=request.model, poll_url=prediction["urls"]["get"])
        except (KeyError, TypeError) as e:
            raise RenderFailed("Music service returned an unexpected response when starting the song.") from e
        self._update_job(job, prediction)
        logger.info(f"Render job {job.id} created ({job.status})")
        return job

    def wait(self, job: RenderJob, token: Optional[CancelToken] = None) -> RenderJob:
        """Poll until the job is terminal. Raises unless it succeeded."""
        token = token or CancelToken()
        deadline = self._clock() + self.timeout_s
        while not job.is_terminal:
            if self._clock() >= deadline:
                job.advance(JobStatus.TIMED_OUT)
                logger.warning(f"Render job {job.id} timed out after {self.timeout_s:.0f}s; abandoning it")
                raise RenderTimedOut("Music generation timed out. Please try again.")
            if token.wait(self.poll_interval_s):
                job.advance(JobStatus.CANCELED)
                logger.info(f"Render job {job.id} abandoned locally")
                raise RenderCanceled("Music generation was cancelled.")
            try:
                response = self.client.get(job.poll_url, headers=self._headers())
            except httpx.HTTPError as e:
                logger.error(f"Polling render job {job.id} failed: {e}", exc_info=True)
                raise RenderFailed(f"Lost contact with the music service ({e}).") from e
            if response.is_error:
                raise RenderFailed(f"Failed to check music generation status: {_provider_error(response)}")
            self._update_job(job, _json(response))

        if job.status == JobStatus.FAILED:
            raise RenderFailed(f"Music generation failed: {job.error_detail or 'no reason given'}")
        if job.status == JobStatus.CANCELED:
            raise RenderCanceled(f"Music generation was canceled by the provider: {job.error_detail or 'no reason given'}")
        return job

    def fetch_output(self, job: RenderJob) -> tuple[bytes, str]:
        if job.status != JobStatus.SUCCEEDED:
            raise RenderFailed(f"Render job {job.id} has not succeeded ({job.status}).")
        if not job.output_url:
            raise RenderFailed("Music generation succeeded but no audio was returned.")
        try:
            response = self.client.get(job.output_url)
        except httpx.HTTPError as e:
            logger.error(f"Downloading render output for job {job.id} failed: {e}", exc_info=True)
            raise RenderFailed(f"The song was created but could not be downloaded ({e}).") from e
        if response.is_error:
            raise RenderFailed(
                f"The song was created but could not be downloaded (HTTP {response.status_code})."
            )
        if not response.content:
            raise RenderFailed("The song was created but the audio file was empty.")
        mime_type = response.headers.get("content-type", "audio/mpeg").split(";")[0].strip()
        logger.info(f"Downloaded {len(response.content)} bytes of audio for job {job.id}")
        return response.content, mime_type

    def render(
        self,
        lyrics: str,
        style_tags: str,
        duration_s: int,
        model: str,
        token: Optional[CancelToken] = None,
    ) -> RenderResult:
        job = self.submit(RenderRequest(lyrics=lyrics, style_tags=style_tags, duration_s=duration_s, model=model))
        self.wait(job, token)
        audio, mime_type = self.fetch_output(job)
        return RenderResult(job=job, audio=audio, audio_mime_type=mime_type)

    def close(self) -> None:
        self.client.close()
