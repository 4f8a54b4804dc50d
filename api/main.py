import logging
import os
from contextlib import asynccontextmanager

import database
from config import Settings, load_settings
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from generator import SongDraftGenerator
from recorder import Recorder, UploadedAudioDevice
from renderer import MusicRenderer
from routers import create, recording, songs
from session import SongwriterSession

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def build_session(settings: Settings) -> SongwriterSession:
    generator = SongDraftGenerator.from_api_key(
        settings.gemini_api_key,
        text_model=settings.gemini_text_model,
        image_model=settings.gemini_image_model,
    )
    renderer = MusicRenderer(
        settings.replicate_api_token,
        poll_interval_s=settings.render_poll_interval_s,
        timeout_s=settings.render_timeout_s,
    )
    recorder = Recorder(UploadedAudioDevice(max_bytes=settings.max_recording_bytes))
    return SongwriterSession(recorder, generator, renderer, model=settings.default_music_model)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    logger.info("Starting up BeatBloom API")
    database.configure(settings.db_path)
    database.init_db()
    session = build_session(settings)
    app.state.session = session
    yield
    logger.info("Shutting down BeatBloom API")
    session.reset()
    session.renderer.close()


app = FastAPI(title="BeatBloom API", lifespan=lifespan)

_origins = [o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins or ["http://localhost:5173", "http://localhost:8000"],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
)

app.include_router(recording.router)
app.include_router(create.router)
app.include_router(songs.router)


@app.get("/health")
def health():
    return {"ok": True}
