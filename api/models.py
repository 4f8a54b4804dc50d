from dataclasses import dataclass
from typing import Literal, Optional, get_args

from errors import InvalidStateTransition
from pydantic import BaseModel, ConfigDict

Genre = Literal[
    "Pop",
    "Rock",
    "Hip Hop",
    "Electronic",
    "Folk / Country",
    "R&B / Soul",
    "Jazz",
    "Orchestral",
    "Kids / Nursery Rhyme",
    "Ambient",
    "Classical",
    "Reggae",
]
Mood = Literal[
    "Happy",
    "Sad",
    "Energetic",
    "Relaxing",
    "Romantic",
    "Epic",
    "Nostalgic",
    "Sentimental",
    "Playful",
    "Mysterious",
    "Hopeful",
]
Arrangement = Literal["Full Band", "Acoustic", "Electronic", "Orchestral", "Simple Acoustic", "Synth & Drums"]
Vocals = Literal["Male", "Female"]

GENRE_OPTIONS = get_args(Genre)
MOOD_OPTIONS = get_args(Mood)
ARRANGEMENT_OPTIONS = get_args(Arrangement)
VOCAL_OPTIONS = get_args(Vocals)


class StyleDescription(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    genre: Genre
    mood: Mood
    arrangement: Arrangement
    vocals: Vocals


@dataclass
class AudioClip:
    data: bytes
    mime_type: str = "audio/webm"


@dataclass
class SongDraft:
    title: str
    lyrics: str
    style: StyleDescription
    cover_art_url: str  # data: URL or remote URL


class JobStatus:
    CREATED = "created"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"

    TERMINAL = frozenset({SUCCEEDED, FAILED, CANCELED, TIMED_OUT})
    RANK = {CREATED: 0, PROCESSING: 1, SUCCEEDED: 2, FAILED: 2, CANCELED: 2, TIMED_OUT: 2}


@dataclass
class RenderJob:
    id: str
    model: str
    poll_url: str
    status: str = JobStatus.CREATED
    output_url: Optional[str] = None
    error_detail: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def advance(self, status: str) -> None:
        """Move the job forward. Repeating the current status is a no-op."""
        if status == self.status:
            return
        if self.is_terminal or JobStatus.RANK[status] < JobStatus.RANK[self.status]:
            raise InvalidStateTransition(f"move render job to {status}", self.status)
        self.status = status


@dataclass
class SavedSong:
    id: Optional[int]
    title: str
    lyrics: str
    style: StyleDescription
    cover_art_url: str
    audio: bytes
    audio_mime_type: str = "audio/mpeg"
    model: Optional[str] = None
    created_at: Optional[str] = None
