import httpx
import main
import pytest
import repository
from conftest import make_genai_client
from fastapi.testclient import TestClient
from generator import SongDraftGenerator
from models import SavedSong, StyleDescription
from recorder import Recorder, UploadedAudioDevice
from renderer import MusicRenderer
from session import SongwriterSession
from test_renderer import AUDIO, FakeReplicate


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "gem-key")
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8_token")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.delenv("DEFAULT_MUSIC_MODEL", raising=False)

    def build_session(settings):
        renderer = MusicRenderer(
            settings.replicate_api_token,
            client=httpx.Client(transport=httpx.MockTransport(FakeReplicate(["succeeded"]))),
            poll_interval_s=0.001,
        )
        return SongwriterSession(
            Recorder(UploadedAudioDevice(max_bytes=1024)),
            SongDraftGenerator(make_genai_client()),
            renderer,
            spawn=lambda target: target(),
        )

    monkeypatch.setattr(main, "build_session", build_session)
    with TestClient(main.app) as c:
        yield c


def _record(client):
    client.post("/recording/start")
    client.post("/recording/chunk", files={"file": ("chunk.webm", b"hum", "audio/webm")})
    return client.post("/recording/stop")


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_models(client):
    ids = [m["id"] for m in client.get("/models").json()["models"]]
    assert "ace-step" in ids
    assert "minimax-music-1.5" in ids


def test_recording_flow(client):
    assert client.get("/recording").json()["state"] == "idle"
    response = _record(client)
    assert response.status_code == 200
    assert response.json()["state"] == "stopped"
    assert response.json()["audio_bytes"] == 3

    audio = client.get("/recording/audio")
    assert audio.content == b"hum"
    assert audio.headers["content-type"].startswith("audio/webm")


def test_invalid_transition_is_conflict(client):
    response = client.post("/recording/stop")
    assert response.status_code == 409
    assert "Cannot" in response.json()["detail"]


def test_empty_chunk_is_rejected(client):
    client.post("/recording/start")
    response = client.post("/recording/chunk", files={"file": ("chunk.webm", b"", "audio/webm")})
    assert response.status_code == 400


def test_oversized_recording_is_unavailable(client):
    client.post("/recording/start")
    response = client.post("/recording/chunk", files={"file": ("chunk.webm", b"x" * 2048, "audio/webm")})
    assert response.status_code == 503


def test_draft_render_and_library(client):
    _record(client)
    draft = client.post("/draft")
    assert draft.status_code == 200
    assert draft.json()["title"] == "Neon Dreams"

    edited = client.put("/draft", json={"lyrics": "[Verse]\nmy words"})
    assert edited.json()["lyrics"] == "[Verse]\nmy words"

    render = client.post("/render", json={"duration_s": 60})
    assert render.status_code == 200
    status = client.get("/render").json()
    assert status["status"] == "saved"

    songs = client.get("/songs").json()["songs"]
    assert len(songs) == 1
    song_id = songs[0]["id"]
    assert songs[0]["lyrics"] == "[Verse]\nmy words"
    assert songs[0]["audio_url"] == f"/songs/{song_id}/audio"
    assert client.get(f"/songs/{song_id}/audio").content == AUDIO

    assert client.delete(f"/songs/{song_id}").json() == {"ok": True}
    assert client.get("/songs").json()["songs"] == []


def test_draft_without_recording_is_conflict(client):
    assert client.post("/draft").status_code == 409
    assert client.get("/draft").status_code == 404
    assert client.get("/render").status_code == 404


def test_empty_lyrics_edit_is_rejected(client):
    _record(client)
    client.post("/draft")
    assert client.put("/draft", json={"lyrics": "  "}).status_code == 400


def test_style_outside_options_is_rejected(client):
    _record(client)
    client.post("/draft")
    style = {"genre": "Polka", "mood": "Happy", "arrangement": "Acoustic", "vocals": "Male"}
    assert client.put("/draft", json={"music_description": style}).status_code == 422


def test_unknown_model_is_bad_request(client):
    assert client.put("/session/model", json={"model": "jukebox"}).status_code == 400
    assert client.put("/session/model", json={"model": "ace-step"}).json() == {"model": "ace-step"}


def test_missing_song_is_not_found(client):
    assert client.get("/songs/404").status_code == 404
    assert client.post("/songs/404/open").status_code == 404
    assert client.delete("/songs/404").json() == {"ok": True}


def test_open_saved_song(client):
    style = StyleDescription(genre="Jazz", mood="Romantic", arrangement="Acoustic", vocals="Male")
    song_id = repository.save_song(
        SavedSong(id=None, title="Old Tune", lyrics="la", style=style, cover_art_url="art", audio=AUDIO)
    )
    response = client.post(f"/songs/{song_id}/open")
    assert response.json()["title"] == "Old Tune"
    assert client.get("/session").json()["opened_song_id"] == song_id
