import base64
import json
import logging
import re

from errors import GenerationFailed
from google import genai
from google.genai import types
from models import (
    ARRANGEMENT_OPTIONS,
    GENRE_OPTIONS,
    MOOD_OPTIONS,
    VOCAL_OPTIONS,
    AudioClip,
    SongDraft,
    StyleDescription,
)
from pydantic import ValidationError

logger = logging.getLogger(__name__)

RAW_PREFIX_CHARS = 200
REQUIRED_KEYS = ("title", "lyrics", "musicDescription", "imagePrompt")

_FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


def _options(values) -> str:
    return json.dumps(list(values))


SONGWRITER_PROMPT = f"""You are an AI songwriter with three tasks. Process the user's audio input by following these steps in order:

**Step 1: Transcribe and Analyze.**
Listen to the audio carefully.
- Transcribe any spoken or sung words. If there are none, base the theme on the melody alone.
- Analyze the humming to determine its emotional tone, tempo and melodic style.

**Step 2: Write Lyrics.**
Write a full set of song lyrics.
- If words were transcribed, use them as the central theme or a starting line.
- Otherwise write lyrics that match the tone and style from Step 1.
- Structure the lyrics into sections (e.g. verse, chorus, bridge).

**Step 3: Classify and Create.**
Based on the audio and your lyrics, provide:
1. **Title:** a short, catchy song title.
2. **Music Style:** an object with "genre", "mood", "arrangement" and "vocals". Choose exactly one option for each:
   - "genre" MUST be one of: {_options(GENRE_OPTIONS)}.
   - "mood" MUST be one of: {_options(MOOD_OPTIONS)}.
   - "arrangement" MUST be one of: {_options(ARRANGEMENT_OPTIONS)}.
   - "vocals" MUST be one of: {_options(VOCAL_OPTIONS)}. Classify the pitch of the voice in the audio; if ambiguous, pick what best fits the melody.
3. **Image Prompt:** a concise prompt for an AI to generate album art that captures the song.

Your output must be a single valid JSON object with the keys "title", "lyrics", "musicDescription" and "imagePrompt".
- "lyrics" is a single multi-line string using \\n for line breaks, with section headers like [Verse 1].
- Escape every string properly. Do not wrap the JSON in markdown code blocks.
- Example: {{"title": "Song Title", "lyrics": "[Verse 1]\\nLine one\\nLine two\\n\\n[Chorus]\\nChorus line", "musicDescription": {{"genre": "Pop", "mood": "Happy", "arrangement": "Full Band", "vocals": "Male"}}, "imagePrompt": "Description for album art"}}"""


def strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match and match.group(2):
        return match.group(2).strip()
    return text


def _repair_json(text: str) -> str:
    return (
        text.replace("\\'", "'")
        .replace('\\"', '"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def parse_response(text: str) -> dict:
    """Parse the model's JSON answer, tolerating fences and common escaping slips."""
    payload = strip_code_fence(text or "")
    if not payload:
        raise GenerationFailed("The AI returned an empty response.")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as first_error:
        try:
            data = json.loads(_repair_json(payload))
        except json.JSONDecodeError:
            raise GenerationFailed(
                f"Could not read the AI response as JSON ({first_error.msg}). "
                f"Raw response: {payload[:RAW_PREFIX_CHARS]}..."
            ) from first_error
    if not isinstance(data, dict):
        raise GenerationFailed(f"Expected a JSON object from the AI. Raw response: {payload[:RAW_PREFIX_CHARS]}...")
    return data


def format_lyrics(lyrics) -> str:
    """Flatten lyrics into one text with a [Section] header line per block."""
    if isinstance(lyrics, str):
        return lyrics.strip()
    if isinstance(lyrics, dict):
        sections = list(lyrics.items())
    elif isinstance(lyrics, list):
        sections = []
        for item in lyrics:
            if not isinstance(item, dict):
                raise GenerationFailed("Received an invalid format for lyrics from the AI.")
            name = item.get("section") or item.get("label") or item.get("name")
            text = item.get("text", item.get("lines"))
            if not name or text is None:
                raise GenerationFailed("Received an invalid format for lyrics from the AI.")
            sections.append((name, text))
    else:
        raise GenerationFailed("Received an invalid format for lyrics from the AI.")

    blocks = []
    for name, text in sections:
        if isinstance(text, list):
            text = "\n".join(str(line) for line in text)
        if not isinstance(text, str):
            raise GenerationFailed(f"Lyrics section {name!r} is not text.")
        blocks.append(f"[{name}]\n{text.strip()}")
    if not blocks:
        raise GenerationFailed("The AI returned empty lyrics.")
    return "\n\n".join(blocks)


def validate_style(raw) -> StyleDescription:
    if not isinstance(raw, dict):
        raise GenerationFailed("AI response for musicDescription was not an object.")
    try:
        return StyleDescription.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}={err.get('input')!r}" for err in e.errors()
        )
        raise GenerationFailed(f"AI returned an invalid music style: {problems}") from e


class SongDraftGenerator:
    def __init__(
        self,
        client: genai.Client,
        text_model: str = "gemini-2.5-flash",
        image_model: str = "imagen-3.0-generate-002",
    ):
        self.client = client
        self.text_model = text_model
        self.image_model = image_model

    @classmethod
    def from_api_key(cls, api_key: str, **kwargs) -> "SongDraftGenerator":
        return cls(genai.Client(api_key=api_key), **kwargs)

    def generate(self, clip: AudioClip) -> SongDraft:
        """Turn a recorded hum into a song draft. Either request failing fails the draft."""
        if not clip.data:
            raise GenerationFailed("No recording available to generate from.")

        logger.info(f"Generating draft from {len(clip.data)} bytes of {clip.mime_type}")
        try:
            response = self.client.models.generate_content(
                model=self.text_model,
                contents=[
                    types.Part.from_text(text=SONGWRITER_PROMPT),
                    types.Part.from_bytes(data=clip.data, mime_type=clip.mime_type or "audio/webm"),
                ],
                config=types.GenerateContentConfig(response_mime_type="application/json"),
            )
            text = response.text
        except Exception as e:
            logger.error(f"Lyrics request failed: {e}", exc_info=True)
            raise GenerationFailed(f"The songwriting service did not respond ({e}).") from e

        data = parse_response(text)
        missing = [key for key in REQUIRED_KEYS if not data.get(key)]
        if missing:
            raise GenerationFailed(f"AI response was missing required fields ({', '.join(missing)}).")

        title = str(data["title"]).strip()
        lyrics = format_lyrics(data["lyrics"])
        style = validate_style(data["musicDescription"])
        image_prompt = str(data["imagePrompt"]).strip()

        cover_art_url = self._render_cover_art(title, style, image_prompt)
        logger.info(f"Draft ready: {title!r} ({style.genre}/{style.mood}/{style.vocals})")
        return SongDraft(title=title, lyrics=lyrics, style=style, cover_art_url=cover_art_url)

    def _render_cover_art(self, title: str, style: StyleDescription, image_prompt: str) -> str:
        prompt = (
            f'Album art for a song titled "{title}". Cinematic, high-resolution, photorealistic. '
            f"Style: {style.genre}. Mood: {style.mood}. {image_prompt}"
        )
        try:
            response = self.client.models.generate_images(
                model=self.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(number_of_images=1, output_mime_type="image/jpeg"),
            )
        except Exception as e:
            logger.error(f"Album art request failed: {e}", exc_info=True)
            raise GenerationFailed(f"Failed to generate album art ({e}).") from e

        images = response.generated_images or []
        if not images or images[0].image is None:
            raise GenerationFailed("Failed to generate album art.")
        image_bytes = images[0].image.image_bytes
        if not image_bytes:
            raise GenerationFailed("Empty image data received for album art.")
        return "data:image/jpeg;base64," + base64.b64encode(image_bytes).decode("ascii")
