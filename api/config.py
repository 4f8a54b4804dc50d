import os
from dataclasses import dataclass

from errors import ConfigError
from music_models import DEFAULT_MODEL, MUSIC_MODELS

REQUIRED_ENV = ("GEMINI_API_KEY", "REPLICATE_API_TOKEN")
MAX_RECORDING_BYTES = 25 * 1024 * 1024  # 25MB


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str
    replicate_api_token: str
    db_path: str = "/data/beatbloom.db"
    gemini_text_model: str = "gemini-2.5-flash"
    gemini_image_model: str = "imagen-3.0-generate-002"
    default_music_model: str = DEFAULT_MODEL
    render_poll_interval_s: float = 2.0
    render_timeout_s: float = 300.0
    max_recording_bytes: int = MAX_RECORDING_BYTES


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings() -> Settings:
    """Read settings from the environment, failing loudly on missing credentials."""
    missing = [name for name in REQUIRED_ENV if not os.environ.get(name, "").strip()]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    default_model = os.environ.get("DEFAULT_MUSIC_MODEL", DEFAULT_MODEL)
    if default_model not in MUSIC_MODELS:
        raise ConfigError(
            f"DEFAULT_MUSIC_MODEL must be one of {', '.join(MUSIC_MODELS)}, got {default_model!r}"
        )

    return Settings(
        gemini_api_key=os.environ["GEMINI_API_KEY"].strip(),
        replicate_api_token=os.environ["REPLICATE_API_TOKEN"].strip(),
        db_path=os.environ.get("DB_PATH", "/data/beatbloom.db"),
        gemini_text_model=os.environ.get("GEMINI_TEXT_MODEL", "gemini-2.5-flash"),
        gemini_image_model=os.environ.get("GEMINI_IMAGE_MODEL", "imagen-3.0-generate-002"),
        default_music_model=default_model,
        render_poll_interval_s=_float_env("RENDER_POLL_INTERVAL_S", 2.0),
        render_timeout_s=_float_env("RENDER_TIMEOUT_S", 300.0),
        max_recording_bytes=int(_float_env("MAX_RECORDING_BYTES", MAX_RECORDING_BYTES)),
    )
