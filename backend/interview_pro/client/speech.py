"""
Speech engine seams for the interview session.

Recognition and synthesis engines are supplied by whatever front end embeds
the session (a browser bridge, a desktop shell, test fakes). Recognition
events are pushed through :class:`RecognitionChannel` so the session consumes
them as an async stream instead of raw callbacks.
"""

from __future__ import annotations

import abc
import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union


class RecognitionErrorCode(str, Enum):
    NO_SPEECH = "no-speech"
    AUDIO_CAPTURE = "audio-capture"
    NOT_ALLOWED = "not-allowed"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    NETWORK = "network"
    ABORTED = "aborted"


# Errors that will not go away by trying again.
PERMANENT_RECOGNITION_ERRORS = frozenset(
    {
        RecognitionErrorCode.AUDIO_CAPTURE,
        RecognitionErrorCode.NOT_ALLOWED,
        RecognitionErrorCode.SERVICE_NOT_ALLOWED,
    }
)


@dataclass(frozen=True)
class RecognitionResult:
    transcript: str
    is_final: bool = False


@dataclass(frozen=True)
class RecognitionStart:
    pass


@dataclass(frozen=True)
class RecognitionResults:
    results: Sequence[RecognitionResult]
    result_index: int = 0


@dataclass(frozen=True)
class RecognitionError:
    code: RecognitionErrorCode
    message: str = ""


@dataclass(frozen=True)
class RecognitionEnd:
    pass


RecognitionEvent = Union[RecognitionStart, RecognitionResults, RecognitionError, RecognitionEnd]


class RecognitionStartError(RuntimeError):
    """Engine refused to start (already running, engine gone, ...)."""


class SpeechRecognizer(abc.ABC):
    """Continuous speech-to-text engine reporting through a single event handler."""

    def __init__(self, lang: str = "en-US", continuous: bool = True, interim_results: bool = True) -> None:
        self.lang = lang
        self.continuous = continuous
        self.interim_results = interim_results
        self._handler: Optional[Callable[[RecognitionEvent], None]] = None

    def bind(self, handler: Callable[[RecognitionEvent], None]) -> None:
        self._handler = handler

    def emit(self, event: RecognitionEvent) -> None:
        if self._handler is not None:
            self._handler(event)

    @abc.abstractmethod
    def start(self) -> None:
        ...

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop listening; pending results are still delivered, then an end event."""

    @abc.abstractmethod
    def abort(self) -> None:
        """Stop listening and drop pending results."""


class RecognitionChannel:
    """Queue between a recognizer's callbacks and the session's event loop."""

    def __init__(self, recognizer: SpeechRecognizer) -> None:
        self.recognizer = recognizer
        self._queue: "asyncio.Queue[RecognitionEvent]" = asyncio.Queue()
        recognizer.bind(self._queue.put_nowait)

    async def next_event(self) -> RecognitionEvent:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every event pushed so far has been handled."""
        await self._queue.join()

    def close(self) -> None:
        self.recognizer.bind(lambda event: None)


@dataclass(frozen=True)
class Voice:
    name: str
    lang: str = "en-US"


@dataclass
class Utterance:
    text: str
    voice: Optional[Voice] = None
    rate: float = 1.0
    pitch: float = 1.0


class SynthesisError(RuntimeError):
    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code

    @property
    def interrupted(self) -> bool:
        return self.code in ("interrupted", "canceled")


class SpeechSynthesizer(abc.ABC):
    """Text-to-speech engine with a queue of one utterance."""

    @abc.abstractmethod
    def voices(self) -> Sequence[Voice]:
        ...

    @abc.abstractmethod
    async def speak(self, utterance: Utterance) -> None:
        """Resolve when playback ends; raise SynthesisError on failure or cancel."""

    @abc.abstractmethod
    def cancel(self) -> None:
        ...


PREFERRED_VOICES: Tuple[str, ...] = (
    "Google UK English Male",
    "Microsoft Mark - English (United States)",
    "Alex",
    "Daniel",
)


def select_voice(voices: Sequence[Voice], preferred: Sequence[str] = PREFERRED_VOICES) -> Optional[Voice]:
    by_name: Dict[str, Voice] = {voice.name: voice for voice in voices}
    for name in preferred:
        if name in by_name:
            return by_name[name]
    return voices[0] if voices else None


# Words speech engines tend to mishear in technical answers.
TECHNICAL_TERMS: Dict[str, str] = {
    "javascript": "JavaScript",
    "python": "Python",
    "java": "Java",
    "react": "React",
    "node js": "Node.js",
    "nodejs": "Node.js",
    "sequel": "SQL",
    "my sequel": "MySQL",
    "post gress": "PostgreSQL",
    "mongo db": "MongoDB",
    "docker": "Docker",
    "kubernetes": "Kubernetes",
    "angler": "Angular",
    "view js": "Vue.js",
    "lambda": "Lambda",
    "c sharp": "C#",
    "see sharp": "C#",
    "rest": "REST",
    "api": "API",
    "apis": "APIs",
    "json": "JSON",
    "html": "HTML",
    "css": "CSS",
    "aws": "AWS",
    "azure": "Azure",
    "linux": "Linux",
    "unix": "Unix",
    "github": "GitHub",
    "git": "Git",
    "devops": "DevOps",
    "ci cd": "CI/CD",
    "front end": "frontend",
    "back end": "backend",
    "type script": "TypeScript",
}


@dataclass
class TermCorrector:
    """Case-insensitive whole-word substitution; longer phrases are tried first."""

    terms: Dict[str, str] = field(default_factory=lambda: dict(TECHNICAL_TERMS))
    _patterns: List[Tuple["re.Pattern[str]", str]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        ordered = sorted(self.terms.items(), key=lambda item: len(item[0].split()), reverse=True)
        self._patterns = [
            (re.compile(rf"\b{re.escape(heard)}\b", re.IGNORECASE), meant) for heard, meant in ordered
        ]

    def __call__(self, text: str) -> str:
        for pattern, meant in self._patterns:
            text = pattern.sub(lambda _match, meant=meant: meant, text)
        return text


correct_technical_terms = TermCorrector()
