from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

LOG = logging.getLogger("interview.client.media")


class MediaAccessError(RuntimeError):
    """Device acquisition failed; ``name`` follows the DOMException names (NotAllowedError, ...)."""

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(message or name)
        self.name = name


class MediaTrack(Protocol):
    kind: str

    def stop(self) -> None:
        ...


class MediaStream(Protocol):
    def get_tracks(self) -> Sequence[MediaTrack]:
        ...


class AudioContext(Protocol):
    state: str

    def connect(self, stream: MediaStream) -> None:
        ...

    async def close(self) -> None:
        ...


@dataclass(frozen=True)
class DeviceInfo:
    kind: str  # "audioinput" | "videoinput" | "audiooutput"
    label: str = ""


class MediaDevices(Protocol):
    async def get_user_media(self, constraints: Dict[str, Any]) -> MediaStream:
        ...

    async def enumerate_devices(self) -> Sequence[DeviceInfo]:
        ...


class Notifier(Protocol):
    def info(self, message: str) -> None:
        ...

    def success(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LoggingNotifier:
    """Default notifier: user-facing notices go to the log."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.log = logger or logging.getLogger("interview.client.notice")

    def info(self, message: str) -> None:
        self.log.info(message)

    def success(self, message: str) -> None:
        self.log.info(message)

    def warning(self, message: str) -> None:
        self.log.warning(message)

    def error(self, message: str) -> None:
        self.log.error(message)


@dataclass(frozen=True)
class Capabilities:
    media_api: bool
    speech_recognition: bool
    speech_synthesis: bool
    secure_origin: bool
    audio_inputs: int = 0
    video_inputs: int = 0

    @property
    def manual_reason(self) -> Optional[str]:
        if not self.speech_recognition:
            return "Your browser does not support speech recognition. You can answer manually using the edit button."
        if not self.secure_origin:
            return "Voice input needs a secure (HTTPS) connection. You can answer manually using the edit button."
        if not self.media_api:
            return "Microphone access is not available here. You can answer manually using the edit button."
        if self.audio_inputs == 0:
            return "No microphone detected. You can answer manually using the edit button."
        return None

    @property
    def prefers_manual_input(self) -> bool:
        return self.manual_reason is not None

    @property
    def can_acquire_media(self) -> bool:
        return self.media_api and self.secure_origin


async def probe_capabilities(
    media_devices: Optional[MediaDevices],
    *,
    speech_recognition: bool,
    speech_synthesis: bool,
    secure_origin: bool = True,
) -> Capabilities:
    audio_inputs = video_inputs = 0
    if media_devices is not None and secure_origin:
        try:
            devices = await media_devices.enumerate_devices()
        except MediaAccessError as exc:
            LOG.warning("device enumeration failed: %s", exc.name)
            devices = []
        audio_inputs = sum(1 for device in devices if device.kind == "audioinput")
        video_inputs = sum(1 for device in devices if device.kind == "videoinput")
    capabilities = Capabilities(
        media_api=media_devices is not None,
        speech_recognition=speech_recognition,
        speech_synthesis=speech_synthesis,
        secure_origin=secure_origin,
        audio_inputs=audio_inputs,
        video_inputs=video_inputs,
    )
    LOG.info("capabilities probed: %s", capabilities)
    return capabilities


class MediaMode(str, Enum):
    AUDIO_VIDEO = "audio_video"
    AUDIO_VIDEO_REDUCED = "audio_video_reduced"
    AUDIO_ONLY = "audio_only"
    MANUAL = "manual"


AUDIO_CONSTRAINTS: Dict[str, Any] = {
    "echoCancellation": True,
    "noiseSuppression": True,
    "autoGainControl": True,
}

# (mode, constraints, notice shown when this step fails and the next one is tried)
FALLBACK_CHAIN: List[Tuple[MediaMode, Dict[str, Any], str]] = [
    (
        MediaMode.AUDIO_VIDEO,
        {
            "video": {"width": {"ideal": 1280}, "height": {"ideal": 720}, "facingMode": "user"},
            "audio": AUDIO_CONSTRAINTS,
        },
        "Could not start the camera in HD. Retrying at a lower resolution.",
    ),
    (
        MediaMode.AUDIO_VIDEO_REDUCED,
        {
            "video": {"width": {"ideal": 640}, "height": {"ideal": 480}, "facingMode": "user"},
            "audio": AUDIO_CONSTRAINTS,
        },
        "Camera unavailable. Continuing with audio only.",
    ),
    (
        MediaMode.AUDIO_ONLY,
        {"video": False, "audio": AUDIO_CONSTRAINTS},
        "Could not access your microphone. Voice controls are disabled, type your answers instead.",
    ),
]


class MediaScope:
    """
    Owns the camera/microphone stream and the audio context for one interview.

    ``release`` is idempotent and runs on every exit path; the scope is also an
    async context manager.
    """

    def __init__(self, audio_context_factory: Optional[Callable[[], AudioContext]] = None) -> None:
        self._audio_context_factory = audio_context_factory
        self.stream: Optional[MediaStream] = None
        self.audio_context: Optional[AudioContext] = None
        self.mode: Optional[MediaMode] = None
        self.released = False

    async def acquire(self, devices: MediaDevices, notifier: Notifier) -> MediaMode:
        if self.released:
            raise RuntimeError("media scope already released")
        if self.stream is not None and self.mode is not None:
            return self.mode
        self._open_audio_context()
        for mode, constraints, failure_notice in FALLBACK_CHAIN:
            try:
                stream = await devices.get_user_media(constraints)
            except MediaAccessError as exc:
                LOG.warning("getUserMedia failed for %s: %s", mode.value, exc.name)
                if mode is MediaMode.AUDIO_ONLY:
                    notifier.warning(failure_notice)
                else:
                    notifier.info(failure_notice)
                continue
            self.stream = stream
            self.mode = mode
            if self.audio_context is not None and any(t.kind == "audio" for t in stream.get_tracks()):
                self.audio_context.connect(stream)
            LOG.info("media acquired: %s", mode.value)
            return mode
        self.mode = MediaMode.MANUAL
        return self.mode

    def _open_audio_context(self) -> None:
        if self.audio_context is not None or self._audio_context_factory is None:
            return
        try:
            self.audio_context = self._audio_context_factory()
        except RuntimeError as exc:
            LOG.warning("audio context unavailable: %s", exc)

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self.stream is not None:
            for track in self.stream.get_tracks():
                track.stop()
            self.stream = None
        context, self.audio_context = self.audio_context, None
        if context is not None and context.state != "closed":
            try:
                await context.close()
            except RuntimeError as exc:
                LOG.warning("error closing audio context: %s", exc)

    async def __aenter__(self) -> "MediaScope":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.release()
