import base64
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import database
import pytest
from models import AudioClip, StyleDescription


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "songs.db")
    monkeypatch.setattr(database, "DB_PATH", path)
    database.init_db()
    return path


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeToken:
    """Cancel token whose waits advance a fake clock instead of sleeping."""

    def __init__(self, clock: FakeClock, cancel_after: int | None = None):
        self.clock = clock
        self.cancel_after = cancel_after
        self.waits = 0
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self):
        return self._cancelled

    def wait(self, timeout):
        self.waits += 1
        if self.cancel_after is not None and self.waits > self.cancel_after:
            self._cancelled = True
        self.clock.advance(timeout)
        return self._cancelled


class FakeDevice:
    def __init__(self, fail_open=False):
        self.fail_open = fail_open
        self.opened = 0
        self.closed = 0
        self.paused = False
        self.chunks = []

    def open(self):
        if self.fail_open:
            raise OSError("Permission denied")
        self.opened += 1
        self.chunks = []

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def write(self, chunk, mime_type=None):
        self.chunks.append(chunk)

    def finish(self):
        return AudioClip(data=b"".join(self.chunks), mime_type="audio/webm")

    def close(self):
        self.closed += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def style():
    return StyleDescription(genre="Pop", mood="Happy", arrangement="Full Band", vocals="Female")


GEMINI_PAYLOAD = {
    "title": "Neon Dreams",
    "lyrics": "[Verse 1]\nCity lights\nHumming low\n\n[Chorus]\nNeon dreams",
    "musicDescription": {"genre": "Electronic", "mood": "Nostalgic", "arrangement": "Synth & Drums", "vocals": "Female"},
    "imagePrompt": "A glowing skyline at night",
}
IMAGE_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


def make_genai_client(payload=None, text=None, image_bytes=IMAGE_BYTES):
    """A stand-in for google.genai.Client returning canned responses."""
    client = MagicMock()
    if text is None:
        text = json.dumps(payload if payload is not None else GEMINI_PAYLOAD)
    client.models.generate_content.return_value = SimpleNamespace(text=text)
    image = SimpleNamespace(image=SimpleNamespace(image_bytes=image_bytes))
    client.models.generate_images.return_value = SimpleNamespace(generated_images=[image])
    return client


def data_url(image_bytes=IMAGE_BYTES):
    return "data:image/jpeg;base64," + base64.b64encode(image_bytes).decode("ascii")
