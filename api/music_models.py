from dataclasses import dataclass


@dataclass(frozen=True)
class MusicModel:
    id: str
    name: str
    description: str
    max_duration_s: int
    duration_options: tuple[int, ...]
    version: str
    supports_lyrics: bool = True
    supports_tags: bool = True
    supports_duration: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "max_duration_s": self.max_duration_s,
            "duration_options": list(self.duration_options),
            "supports": {
                "lyrics": self.supports_lyrics,
                "tags": self.supports_tags,
                "duration": self.supports_duration,
            },
        }


ACE_STEP = "ace-step"
MINIMAX = "minimax-music-1.5"

MUSIC_MODELS = {
    ACE_STEP: MusicModel(
        id=ACE_STEP,
        name="ACE-Step",
        description="Fast, versatile music generation with good tag adherence",
        max_duration_s=120,
        duration_options=(30, 60, 120),
        version="280fc4f9ee507577f880a167f639c02622421d8fecf492454320311217b688f1",
    ),
    MINIMAX: MusicModel(
        id=MINIMAX,
        name="MiniMax Music 1.5",
        description="High-quality music with natural vocals and better coherence",
        max_duration_s=300,
        duration_options=(30, 60, 120, 180, 300),
        version="latest",
        # Length is decided by the provider from the lyrics
        supports_duration=False,
    ),
}

DEFAULT_MODEL = MINIMAX


def get_model(model_id: str) -> MusicModel:
    try:
        return MUSIC_MODELS[model_id]
    except KeyError:
        raise ValueError(f"Unknown music model: {model_id!r}") from None
