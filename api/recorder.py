"""Microphone capture lifecycle as an explicit state machine.

    idle -> recording <-> paused -> stopped
    any  -> failed            (device or permission error)
    any  -> idle              (discard)

All transitions go through `Recorder._transition`, which either returns the
new state or raises InvalidStateTransition. The audio device is held only
between a successful start and the next stop, discard or failure.
"""

import logging
import threading
import time
from typing import Callable, Optional, Protocol

from errors import DeviceUnavailable, InvalidStateTransition
from models import AudioClip

logger = logging.getLogger(__name__)

IDLE = "idle"
RECORDING = "recording"
PAUSED = "paused"
STOPPED = "stopped"
FAILED = "failed"

TRANSITIONS = {
    ("start", IDLE): RECORDING,
    ("start", STOPPED): RECORDING,  # re-record; the previous take is dropped
    ("pause", RECORDING): PAUSED,
    ("resume", PAUSED): RECORDING,
    ("stop", RECORDING): STOPPED,
    ("stop", PAUSED): STOPPED,
    ("fail", IDLE): FAILED,
    ("fail", RECORDING): FAILED,
    ("fail", PAUSED): FAILED,
    ("fail", STOPPED): FAILED,
    ("fail", FAILED): FAILED,
    **{("discard", state): IDLE for state in (IDLE, RECORDING, PAUSED, STOPPED, FAILED)},
}


class AudioDevice(Protocol):
    def open(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def write(self, chunk: bytes, mime_type: Optional[str] = None) -> None: ...

    def finish(self) -> AudioClip: ...

    def close(self) -> None: ...


class UploadedAudioDevice:
    """Audio input fed by chunks the browser's MediaRecorder uploads."""

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self._chunks: list[bytes] = []
        self._size = 0
        self._mime_type: Optional[str] = None
        self._open = False
        self._paused = False

    def open(self) -> None:
        self._chunks.clear()
        self._size = 0
        self._mime_type = None
        self._open = True
        self._paused = False

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def write(self, chunk: bytes, mime_type: Optional[str] = None) -> None:
        if not self._open or self._paused:
            raise DeviceUnavailable("The recorder is not capturing audio right now")
        if self._size + len(chunk) > self.max_bytes:
            raise DeviceUnavailable(f"Recording too large (max {self.max_bytes // (1024 * 1024)}MB)")
        if mime_type and self._mime_type is None:
            self._mime_type = mime_type.split(";")[0].strip()
        self._chunks.append(chunk)
        self._size += len(chunk)

    def finish(self) -> AudioClip:
        return AudioClip(data=b"".join(self._chunks), mime_type=self._mime_type or "audio/webm")

    def close(self) -> None:
        self._open = False
        self._paused = False
        self._chunks.clear()
        self._size = 0

    @property
    def size(self) -> int:
        return self._size


class Recorder:
    def __init__(self, device: AudioDevice, clock: Callable[[], float] = time.monotonic):
        self.device = device
        self._clock = clock
        self._lock = threading.RLock()
        self.state = IDLE
        self.audio: Optional[AudioClip] = None
        self.error: Optional[str] = None
        self._elapsed = 0.0
        self._segment_started: Optional[float] = None
        self._device_held = False

    def _transition(self, action: str) -> str:
        new_state = TRANSITIONS.get((action, self.state))
        if new_state is None:
            raise InvalidStateTransition(f"{action} recording", self.state)
        logger.info(f"Recorder {self.state} -> {new_state} ({action})")
        self.state = new_state
        return new_state

    @property
    def elapsed_s(self) -> float:
        with self._lock:
            running = 0.0
            if self._segment_started is not None:
                running = self._clock() - self._segment_started
            return self._elapsed + running

    def _stop_timer(self) -> None:
        if self._segment_started is not None:
            self._elapsed += self._clock() - self._segment_started
            self._segment_started = None

    def _release(self) -> None:
        if self._device_held:
            self._device_held = False
            try:
                self.device.close()
            except Exception as e:
                logger.warning(f"Audio device release failed: {e}")

    def _fail(self, message: str) -> DeviceUnavailable:
        self._stop_timer()
        self._release()
        self.audio = None
        self.error = message
        self._transition("fail")
        return DeviceUnavailable(message)

    def start(self) -> None:
        with self._lock:
            if ("start", self.state) not in TRANSITIONS:
                raise InvalidStateTransition("start recording", self.state)
            self.audio = None
            self.error = None
            self._elapsed = 0.0
            try:
                self.device.open()
            except Exception as e:
                logger.error(f"Audio device unavailable: {e}", exc_info=True)
                raise self._fail("Microphone is unavailable. Check that it is connected and allowed.") from e
            self._device_held = True
            self._transition("start")
            self._segment_started = self._clock()

    def pause(self) -> None:
        with self._lock:
            self._transition("pause")
            self._stop_timer()
            self.device.pause()

    def resume(self) -> None:
        with self._lock:
            self._transition("resume")
            self.device.resume()
            self._segment_started = self._clock()

    def feed(self, chunk: bytes, mime_type: Optional[str] = None) -> None:
        """Append captured audio; only accepted while recording."""
        with self._lock:
            if self.state != RECORDING:
                raise InvalidStateTransition("add audio", self.state)
            self.device.write(chunk, mime_type)

    def stop(self) -> AudioClip:
        with self._lock:
            if ("stop", self.state) not in TRANSITIONS:
                raise InvalidStateTransition("stop recording", self.state)
            self._stop_timer()
            try:
                clip = self.device.finish()
            except Exception as e:
                logger.error(f"Failed to finalize recording: {e}", exc_info=True)
                raise self._fail("The recording could not be finished. Please record again.") from e
            if not clip.data:
                raise self._fail("No audio was captured. Please record again.")
            self._release()
            self.audio = clip
            self._transition("stop")
            logger.info(f"Recording finished: {len(clip.data)} bytes, {self._elapsed:.1f}s")
            return clip

    def discard(self) -> None:
        with self._lock:
            self._segment_started = None
            self._elapsed = 0.0
            self._release()
            self.audio = None
            self.error = None
            self._transition("discard")

    def hand_off(self, clip: AudioClip) -> bool:
        """Discard `clip` once it has been consumed, unless a newer take replaced it."""
        with self._lock:
            if self.state != STOPPED or self.audio is not clip:
                logger.info("Recording changed since it was handed off; keeping the new take")
                return False
            self.discard()
            return True

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state": self.state,
                "elapsed_s": round(self.elapsed_s, 1),
                "has_audio": self.audio is not None,
                "audio_bytes": len(self.audio.data) if self.audio else 0,
                "audio_mime_type": self.audio.mime_type if self.audio else None,
                "error": self.error,
            }
