"""
Interview session: one round from question fetch to answer submission.

The session owns every resource it touches (media stream, audio context,
recognizer, pending utterance) and releases all of them in :meth:`teardown`.
Phases move LOADING -> ASKING -> LISTENING -> REVIEWING -> ASKING ... and end
in SUBMITTING -> DONE, or ABANDONED when no questions could be fetched.
Voice input degrades to manual typing on device errors and stays that way
until :meth:`retry_voice` is called.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

import httpx

from interview_pro import config as app_config
from interview_pro.client.api import ApiRequestError
from interview_pro.client.lease import RecognitionLease
from interview_pro.client.media import (
    AudioContext,
    Capabilities,
    LoggingNotifier,
    MediaDevices,
    MediaMode,
    MediaScope,
    Notifier,
    probe_capabilities,
)
from interview_pro.client.speech import (
    PERMANENT_RECOGNITION_ERRORS,
    PREFERRED_VOICES,
    RecognitionChannel,
    RecognitionEnd,
    RecognitionError,
    RecognitionErrorCode,
    RecognitionEvent,
    RecognitionResults,
    RecognitionStart,
    RecognitionStartError,
    SpeechRecognizer,
    SpeechSynthesizer,
    SynthesisError,
    Utterance,
    select_voice,
)
from interview_pro.client.transcript import TranscriptBuffer

LOG = logging.getLogger("interview.client.session")


class QuestionGenerationError(RuntimeError):
    """The question endpoint gave nothing usable."""


class SessionStateError(RuntimeError):
    """Operation not allowed in the session's current phase."""


class SessionPhase(str, Enum):
    LOADING = "loading"
    ASKING = "asking"
    LISTENING = "listening"
    REVIEWING = "reviewing"
    SUBMITTING = "submitting"
    DONE = "done"
    ABANDONED = "abandoned"


class RoundApi(Protocol):
    async def generate_questions(self, space_id: Any, round_name: str) -> Dict[str, Any]:
        ...

    async def finish_round(self, space_id: Any, round_name: str, answers: Mapping[str, str]) -> Dict[str, Any]:
        ...


@dataclass
class SessionConfig:
    capture_delay: float = 1.0  # after the question finishes playing
    advance_delay: float = 0.3  # before the next question is announced
    lease_interval: float = app_config.RECOGNITION_LEASE_SECONDS
    speech_rate: float = 0.9
    speech_pitch: float = 1.1
    language: str = "en-US"
    preferred_voices: Tuple[str, ...] = PREFERRED_VOICES
    max_recognition_failures: int = 3


@dataclass
class ClientEnvironment:
    """Engines available to the session; ``None`` means the platform lacks it."""

    media_devices: Optional[MediaDevices] = None
    recognizer_factory: Optional[Callable[[], SpeechRecognizer]] = None
    synthesizer: Optional[SpeechSynthesizer] = None
    audio_context_factory: Optional[Callable[[], AudioContext]] = None
    secure_origin: bool = True


@dataclass(frozen=True)
class SessionControls:
    can_edit: bool
    can_use_mic: bool
    can_advance: bool
    can_replay: bool


@dataclass
class _Announcement:
    index: int
    interrupted: asyncio.Event = field(default_factory=asyncio.Event)


def space_path(space_id: Any) -> str:
    return f"/space/{space_id}"


class InterviewSession:
    def __init__(
        self,
        api: RoundApi,
        environment: Optional[ClientEnvironment] = None,
        notifier: Optional[Notifier] = None,
        navigate: Optional[Callable[[str], None]] = None,
        config: Optional[SessionConfig] = None,
    ) -> None:
        self.api = api
        self.env = environment or ClientEnvironment()
        self.notifier = notifier or LoggingNotifier()
        self._navigate = navigate or (lambda path: LOG.info("navigate -> %s", path))
        self.config = config or SessionConfig()

        self.space_id: Any = None
        self.round_name: Optional[str] = None
        self.phase = SessionPhase.LOADING
        self.questions: List[str] = []
        self.index = 0
        self.answers: Dict[str, str] = {}
        self.transcript = TranscriptBuffer()

        self.is_recording = False
        self.is_speaking = False
        self.manual_input_mode = False
        self.capabilities: Optional[Capabilities] = None
        self.media_mode: Optional[MediaMode] = None

        self._init_attempted = False
        self._torn_down = False
        self._recognition_failures = 0
        self._media = MediaScope(self.env.audio_context_factory)
        self._recognizer: Optional[SpeechRecognizer] = None
        self._channel: Optional[RecognitionChannel] = None
        self._pump: Optional["asyncio.Task[None]"] = None
        self._lease: Optional[RecognitionLease] = None
        self._announcement: Optional[_Announcement] = None

    # -- views ---------------------------------------------------------------

    @property
    def current_question(self) -> Optional[str]:
        if 0 <= self.index < len(self.questions):
            return self.questions[self.index]
        return None

    @property
    def current_answer(self) -> str:
        return self.transcript.display

    @property
    def word_count(self) -> int:
        return self.transcript.word_count()

    @property
    def is_last_question(self) -> bool:
        return bool(self.questions) and self.index == len(self.questions) - 1

    @property
    def progress_percentage(self) -> float:
        if not self.questions:
            return 0.0
        return (self.index + 1) / len(self.questions) * 100

    @property
    def voice_available(self) -> bool:
        return self._recognizer is not None and not self.manual_input_mode

    @property
    def controls(self) -> SessionControls:
        in_round = self.phase in (SessionPhase.ASKING, SessionPhase.LISTENING, SessionPhase.REVIEWING)
        return SessionControls(
            can_edit=in_round and not self.is_speaking and (self.manual_input_mode or not self.is_recording),
            can_use_mic=in_round and not self.is_speaking and self.voice_available,
            can_advance=in_round and not self.is_speaking,
            can_replay=in_round and self.env.synthesizer is not None,
        )

    # -- lifecycle -----------------------------------------------------------

    async def initialize(self, space_id: Any, round_name: str) -> bool:
        """Probe devices, fetch questions and announce the first one."""
        if self._init_attempted:
            raise SessionStateError("initialization already attempted")
        self._init_attempted = True
        self.space_id = space_id
        self.round_name = round_name
        self.phase = SessionPhase.LOADING

        await self._prepare_devices()
        try:
            questions = await self._fetch_questions()
        except QuestionGenerationError as exc:
            LOG.warning("abandoning round %s/%s: %s", space_id, round_name, exc)
            self.notifier.error("Failed to generate interview questions. Please try again.")
            await self.teardown()
            self.questions = []
            self.answers = {}
            self.transcript.clear()
            self.phase = SessionPhase.ABANDONED
            self._navigate(space_path(space_id))
            return False

        self.questions = questions
        self.answers = {question: "" for question in questions}
        self.index = 0
        LOG.info("round %s/%s started with %s questions", space_id, round_name, len(questions))
        await self.announce_question(0)
        return True

    async def _prepare_devices(self) -> None:
        env = self.env
        self.capabilities = await probe_capabilities(
            env.media_devices,
            speech_recognition=env.recognizer_factory is not None,
            speech_synthesis=env.synthesizer is not None,
            secure_origin=env.secure_origin,
        )
        if self.capabilities.can_acquire_media and env.media_devices is not None:
            self.media_mode = await self._media.acquire(env.media_devices, self.notifier)
        else:
            self.media_mode = MediaMode.MANUAL

        reason = self.capabilities.manual_reason
        if reason is not None:
            self._enter_manual_mode(reason, level="warning")
        elif self.media_mode is MediaMode.MANUAL:
            # the fallback chain already told the user
            self._enter_manual_mode(None)
        else:
            self._install_recognizer()

    def _install_recognizer(self) -> None:
        if self._recognizer is not None or self.env.recognizer_factory is None:
            return
        recognizer = self.env.recognizer_factory()
        recognizer.lang = self.config.language
        recognizer.continuous = True
        recognizer.interim_results = True
        self._recognizer = recognizer
        self._channel = RecognitionChannel(recognizer)
        self._lease = RecognitionLease(self._renew_recognition, self.config.lease_interval)
        self._pump = asyncio.create_task(self._pump_recognition())

    async def _fetch_questions(self) -> List[str]:
        try:
            payload = await self.api.generate_questions(self.space_id, self.round_name)
        except (ApiRequestError, httpx.HTTPError) as exc:
            raise QuestionGenerationError(str(exc)) from exc
        raw = payload.get("questions") if payload.get("success") else None
        questions: List[str] = []
        for item in raw or []:
            if isinstance(item, str) and item.strip() and item.strip() not in questions:
                questions.append(item.strip())
        if not questions:
            raise QuestionGenerationError("no parsable questions in response")
        return questions

    async def teardown(self) -> None:
        """Release every resource; safe to call any number of times."""
        if self._torn_down:
            return
        self._torn_down = True
        self._interrupt_announcement()
        if self._lease is not None:
            await self._lease.close()
        if self._recognizer is not None:
            self._recognizer.abort()
        if self._channel is not None:
            self._channel.close()
        pump, self._pump = self._pump, None
        if pump is not None:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        await self._media.release()
        self.is_recording = False
        self.is_speaking = False
        LOG.info("session resources released")

    async def exit(self) -> None:
        await self.teardown()
        if self.phase not in (SessionPhase.DONE, SessionPhase.ABANDONED):
            self.phase = SessionPhase.ABANDONED
        self._navigate(space_path(self.space_id))

    # -- questions -----------------------------------------------------------

    async def announce_question(self, index: int) -> None:
        """Speak question ``index``; listening starts once playback has finished."""
        if self._torn_down or not 0 <= index < len(self.questions):
            return
        self._interrupt_announcement()
        announcement = _Announcement(index)
        self._announcement = announcement
        self.phase = SessionPhase.ASKING

        synthesizer = self.env.synthesizer
        if synthesizer is not None:
            utterance = Utterance(
                text=self.questions[index],
                voice=select_voice(synthesizer.voices(), self.config.preferred_voices),
                rate=self.config.speech_rate,
                pitch=self.config.speech_pitch,
            )
            self.is_speaking = True
            try:
                await synthesizer.speak(utterance)
            except SynthesisError as exc:
                if not exc.interrupted:
                    LOG.warning("speech synthesis failed: %s", exc.code)
                    self.notifier.warning("Could not play the question audio. Please read it on screen.")
            finally:
                if not announcement.interrupted.is_set():
                    self.is_speaking = False

        if announcement.interrupted.is_set() or self._torn_down:
            return
        if self.manual_input_mode or self._recognizer is None:
            self._announcement = None
            self.phase = SessionPhase.REVIEWING
            return
        self.notifier.info("Speak now...")
        try:
            await asyncio.wait_for(announcement.interrupted.wait(), timeout=self.config.capture_delay)
            return
        except asyncio.TimeoutError:
            pass
        if self._announcement is announcement:
            self._announcement = None
        if not self._torn_down and self.index == index and self.phase is SessionPhase.ASKING:
            self.capture_answer()

    def stop_announcement(self) -> None:
        """Cut the question audio short; listening is not started."""
        if self._announcement is None:
            return
        self._interrupt_announcement()
        if self.phase is SessionPhase.ASKING:
            self.phase = SessionPhase.REVIEWING

    async def replay_question(self) -> None:
        if self.is_recording:
            self.stop_listening()
            await self.settle()
        await self.announce_question(self.index)

    def _interrupt_announcement(self) -> None:
        announcement, self._announcement = self._announcement, None
        if announcement is None:
            return
        announcement.interrupted.set()
        self.is_speaking = False
        if self.env.synthesizer is not None:
            self.env.synthesizer.cancel()

    # -- answers -------------------------------------------------------------

    def capture_answer(self) -> bool:
        """Start continuous recognition for the current question."""
        if self._torn_down or self.is_speaking:
            return False
        if not self.voice_available:
            self.notifier.warning("Voice input is unavailable. Type your answer instead.")
            return False
        if self.is_recording:
            return True
        assert self._recognizer is not None and self._lease is not None
        try:
            self._recognizer.start()
        except RecognitionStartError as exc:
            LOG.warning("recognizer refused to start: %s", exc)
            self._record_recognition_failure("Could not start voice input. Please try again.")
            return False
        self._lease.start()
        self.is_recording = True
        self.phase = SessionPhase.LISTENING
        return True

    start_listening = capture_answer

    def stop_listening(self) -> None:
        if self._lease is not None:
            self._lease.stop()
        if self._recognizer is not None and self.is_recording:
            self._recognizer.stop()
        self.is_recording = False
        if self.phase is SessionPhase.LISTENING:
            self.phase = SessionPhase.REVIEWING

    def edit_answer(self, text: str) -> None:
        if self.phase not in (SessionPhase.ASKING, SessionPhase.LISTENING, SessionPhase.REVIEWING):
            raise SessionStateError(f"cannot edit answers while {self.phase.value}")
        if self.is_speaking:
            raise SessionStateError("cannot edit while the question is being read")
        if self.is_recording and not self.manual_input_mode:
            raise SessionStateError("stop listening before editing the answer")
        self.transcript.replace(text)
        self.phase = SessionPhase.REVIEWING

    async def advance(self) -> bool:
        """Commit the current answer and move on; submits after the last question."""
        if self.phase not in (SessionPhase.ASKING, SessionPhase.LISTENING, SessionPhase.REVIEWING):
            raise SessionStateError(f"cannot advance while {self.phase.value}")
        if self.is_speaking:
            raise SessionStateError("wait for the question to finish")
        await self._halt_capture()
        question = self.questions[self.index]
        self.answers[question] = self.current_answer.strip()
        self.transcript.clear()
        self._recognition_failures = 0

        if self.index < len(self.questions) - 1:
            self.index += 1
            await asyncio.sleep(self.config.advance_delay)
            await self.announce_question(self.index)
            return True
        return await self.submit()

    async def _halt_capture(self) -> None:
        """Stop recognition and fold in every result it delivered before stopping."""
        self._interrupt_announcement()
        if self._lease is not None:
            self._lease.stop()
        if self._recognizer is not None and self.is_recording:
            self._recognizer.abort()
        await self.settle()
        self.is_recording = False

    async def settle(self) -> None:
        """Wait until every recognition event received so far has been handled."""
        if self._channel is not None and self._pump is not None:
            await self._channel.join()

    async def submit(self) -> bool:
        if self.phase in (SessionPhase.DONE, SessionPhase.ABANDONED, SessionPhase.LOADING):
            raise SessionStateError(f"cannot submit while {self.phase.value}")
        await self._halt_capture()
        pending = self.current_answer.strip()
        if pending and self.current_question is not None:
            self.answers[self.current_question] = pending

        answers = {q: self.answers[q] for q in self.questions if self.answers.get(q, "").strip()}
        if not answers:
            self.notifier.warning("Please answer at least one question before finishing.")
            self.phase = SessionPhase.REVIEWING
            return False

        self.phase = SessionPhase.SUBMITTING
        try:
            result = await self.api.finish_round(self.space_id, self.round_name, answers)
        except (ApiRequestError, httpx.HTTPError) as exc:
            LOG.warning("submitting answers failed: %s", exc)
            result = {"success": False}
        if not result.get("success"):
            self.notifier.error("Failed to submit interview answers. Please try again.")
            return False

        LOG.info("round %s/%s submitted with %s answers", self.space_id, self.round_name, len(answers))
        self.notifier.success("Interview completed successfully!")
        await self.teardown()
        self.phase = SessionPhase.DONE
        self._navigate(space_path(self.space_id))
        return True

    # -- voice fallback ------------------------------------------------------

    def _enter_manual_mode(self, message: Optional[str], level: str = "error") -> None:
        if self._lease is not None:
            self._lease.stop()
        if self._recognizer is not None and self.is_recording:
            self._recognizer.abort()
        self.is_recording = False
        if not self.manual_input_mode:
            LOG.info("switching to manual input")
        self.manual_input_mode = True
        if message:
            getattr(self.notifier, level)(message)
        if self.phase is SessionPhase.LISTENING:
            self.phase = SessionPhase.REVIEWING

    def _record_recognition_failure(self, message: str) -> None:
        self._recognition_failures += 1
        if self._recognition_failures >= self.config.max_recognition_failures:
            self._enter_manual_mode("Voice input keeps failing. Switched to typing your answers.")
        else:
            self.notifier.warning(message)

    async def retry_voice(self) -> bool:
        """Explicit user request to bring voice input back after a fallback."""
        if self._torn_down:
            return False
        env = self.env
        if env.recognizer_factory is None or not env.secure_origin:
            self.notifier.warning("Voice input is not supported here. Please keep typing your answers.")
            return False
        if self.media_mode in (None, MediaMode.MANUAL) and env.media_devices is not None:
            self.media_mode = await self._media.acquire(env.media_devices, self.notifier)
            if self.media_mode is MediaMode.MANUAL:
                return False
        self._install_recognizer()
        self.manual_input_mode = False
        self._recognition_failures = 0
        self.notifier.info("Voice input re-enabled.")
        return True

    # -- recognition events --------------------------------------------------

    def _renew_recognition(self) -> None:
        if self._recognizer is not None and self.is_recording:
            self._recognizer.stop()

    async def _pump_recognition(self) -> None:
        assert self._channel is not None
        channel = self._channel
        while True:
            event = await channel.next_event()
            try:
                self._handle_recognition_event(event)
            except Exception:
                LOG.exception("recognition event handler failed for %r", event)
            finally:
                channel.task_done()

    def _handle_recognition_event(self, event: RecognitionEvent) -> None:
        if self._torn_down:
            return
        if isinstance(event, RecognitionStart):
            self.is_recording = True
        elif isinstance(event, RecognitionResults):
            self.transcript.apply(event.results, event.result_index)
            self._recognition_failures = 0
        elif isinstance(event, RecognitionError):
            self._on_recognition_error(event.code)
        elif isinstance(event, RecognitionEnd):
            self._on_recognition_end()

    def _on_recognition_error(self, code: RecognitionErrorCode) -> None:
        if code is RecognitionErrorCode.NO_SPEECH:
            return
        LOG.warning("speech recognition error: %s", code.value)
        if self._lease is not None:
            self._lease.stop()
        self.is_recording = False
        if self.phase is SessionPhase.LISTENING:
            self.phase = SessionPhase.REVIEWING
        if code is RecognitionErrorCode.ABORTED:
            return
        if code in PERMANENT_RECOGNITION_ERRORS:
            if code is RecognitionErrorCode.AUDIO_CAPTURE:
                self._enter_manual_mode("No microphone could be used. Please type your answers instead.")
            else:
                self._enter_manual_mode("Microphone access denied. Please check your browser permissions.")
            return
        self._record_recognition_failure(f"Voice input stopped ({code.value}). Press the mic to try again.")

    def _on_recognition_end(self) -> None:
        lease, recognizer = self._lease, self._recognizer
        if lease is not None and recognizer is not None and lease.consume_pause() and not self.manual_input_mode:
            try:
                recognizer.start()
                return
            except RecognitionStartError as exc:
                LOG.warning("recognition restart failed: %s", exc)
        if lease is not None:
            lease.stop()
        self.is_recording = False
        if self.phase is SessionPhase.LISTENING:
            self.phase = SessionPhase.REVIEWING
