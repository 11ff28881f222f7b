"""
Interview session state machine, driven with in-memory engines.

Run with: pytest backend/tests/test_session.py -v
"""
import asyncio

import pytest

from fakes import (
    FakeAudioContext,
    FakeMediaDevices,
    FakeRecognizer,
    FakeRoundApi,
    FakeSynthesizer,
    RecordingNotifier,
)
from interview_pro.client.media import MediaMode
from interview_pro.client.session import (
    ClientEnvironment,
    InterviewSession,
    SessionConfig,
    SessionPhase,
    SessionStateError,
)
from interview_pro.client.speech import RecognitionErrorCode, Voice

QUESTIONS = [
    "Tell me about yourself.",
    "Which databases have you used?",
    "Where do you see yourself in five years?",
]


class Harness:
    def __init__(self, questions=QUESTIONS, api=None, recognizer=None, synthesizer=None, devices=None, **env):
        self.api = api or FakeRoundApi(list(questions))
        self.recognizer = recognizer or FakeRecognizer()
        self.synthesizer = synthesizer or FakeSynthesizer(voices=[Voice("Samantha"), Voice("Daniel")])
        self.devices = devices or FakeMediaDevices()
        self.audio_contexts = []
        self.notifier = RecordingNotifier()
        self.visited = []
        environment = ClientEnvironment(
            media_devices=self.devices,
            recognizer_factory=env.pop("recognizer_factory", lambda: self.recognizer),
            synthesizer=self.synthesizer,
            audio_context_factory=self._new_audio_context,
            **env,
        )
        self.session = InterviewSession(
            self.api,
            environment,
            notifier=self.notifier,
            navigate=self.visited.append,
            config=SessionConfig(capture_delay=0, advance_delay=0, lease_interval=60),
        )

    def _new_audio_context(self):
        context = FakeAudioContext()
        self.audio_contexts.append(context)
        return context


async def test_three_questions_spoken_spoken_typed_submits_once_in_order():
    h = Harness()
    session = h.session

    assert await session.initialize(7, "Technical") is True
    assert session.phase is SessionPhase.LISTENING
    assert h.recognizer.running

    h.recognizer.hear(("I build web apps in javascript", True))
    await session.settle()
    await session.advance()

    h.recognizer.hear(("mostly my sequel and", False))
    await session.settle()
    assert session.current_answer == "mostly MySQL and"
    h.recognizer.hear(("mostly my sequel and mongo db", True))
    await session.settle()
    await session.advance()

    session.stop_listening()
    session.edit_answer("Leading a platform team.")
    await session.advance()

    assert len(h.api.finish_calls) == 1
    space_id, round_name, answers = h.api.finish_calls[0]
    assert (space_id, round_name) == (7, "Technical")
    assert list(answers) == QUESTIONS
    assert answers == {
        QUESTIONS[0]: "I build web apps in JavaScript",
        QUESTIONS[1]: "mostly MySQL and MongoDB",
        QUESTIONS[2]: "Leading a platform team.",
    }
    assert session.phase is SessionPhase.DONE
    assert h.visited == ["/space/7"]
    assert h.notifier.levels("success")


async def test_every_question_is_announced_and_captured_before_submission():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")

    for i in range(len(QUESTIONS)):
        assert [u.text for u in h.synthesizer.spoken] == QUESTIONS[: i + 1]
        assert h.recognizer.starts == i + 1
        assert not h.api.finish_calls
        h.recognizer.hear((f"answer {i}", True))
        await session.settle()
        await session.advance()

    assert len(h.api.finish_calls) == 1
    assert len(h.synthesizer.spoken) == len(QUESTIONS)


async def test_announcement_uses_preferred_voice_rate_and_pitch():
    h = Harness()
    await h.session.initialize(1, "HR")

    utterance = h.synthesizer.spoken[0]
    assert utterance.voice == Voice("Daniel")
    assert utterance.rate == pytest.approx(0.9)
    assert utterance.pitch == pytest.approx(1.1)


async def test_fetch_failure_abandons_round_and_navigates_back():
    h = Harness(api=FakeRoundApi(question_payload={"success": False}))
    session = h.session

    assert await session.initialize(3, "Technical") is False

    assert session.phase is SessionPhase.ABANDONED
    assert session.questions == []
    assert session.answers == {}
    assert h.visited == ["/space/3"]
    assert h.notifier.levels("error")
    assert all(track.stopped == 1 for track in h.devices.streams[0].tracks)
    assert h.synthesizer.spoken == []


async def test_initialize_twice_is_refused():
    h = Harness()
    await h.session.initialize(1, "HR")

    with pytest.raises(SessionStateError):
        await h.session.initialize(1, "HR")
    assert len(h.api.question_calls) == 1


async def test_transcript_survives_lease_renewal():
    h = Harness()
    session = h.session
    session.config.lease_interval = 0.01
    await session.initialize(1, "HR")

    h.recognizer.hear(("first part", True))
    await session.settle()
    await asyncio.sleep(0.05)
    await session.settle()
    h.recognizer.hear(("second part in python", True))
    await session.settle()

    assert h.recognizer.starts > 1
    assert session.transcript.text == "first part second part in Python"
    assert session.is_recording


async def test_no_speech_error_is_ignored():
    h = Harness()
    await h.session.initialize(1, "HR")

    h.recognizer.fail(RecognitionErrorCode.NO_SPEECH)
    await h.session.settle()

    assert h.session.is_recording
    assert not h.session.manual_input_mode
    assert not h.notifier.levels("warning")


async def test_network_error_stops_capture_with_warning():
    h = Harness()
    await h.session.initialize(1, "HR")

    h.recognizer.fail(RecognitionErrorCode.NETWORK)
    await h.session.settle()

    assert not h.session.is_recording
    assert h.session.phase is SessionPhase.REVIEWING
    assert not h.session.manual_input_mode
    assert h.notifier.levels("warning")


async def test_repeated_network_errors_fall_back_to_manual():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")

    for _ in range(session.config.max_recognition_failures):
        if not h.recognizer.running:
            session.capture_answer()
        h.recognizer.fail(RecognitionErrorCode.NETWORK)
        await session.settle()

    assert session.manual_input_mode


async def test_microphone_denied_switches_to_manual_and_round_still_completes():
    h = Harness(recognizer=FakeRecognizer(deny_with=RecognitionErrorCode.NOT_ALLOWED))
    session = h.session
    await session.initialize(9, "Technical")
    await session.settle()

    assert session.manual_input_mode is True
    assert any("denied" in message for message in h.notifier.levels("error"))

    for i in range(len(QUESTIONS)):
        session.edit_answer(f"typed {i}")
        await session.advance()

    assert h.recognizer.starts == 1
    assert h.api.finish_calls[0][2] == {q: f"typed {i}" for i, q in enumerate(QUESTIONS)}
    assert session.phase is SessionPhase.DONE


async def test_manual_mode_is_sticky_until_retry():
    h = Harness(recognizer=FakeRecognizer(deny_with=RecognitionErrorCode.NOT_ALLOWED))
    session = h.session
    await session.initialize(1, "HR")
    await session.settle()

    assert session.capture_answer() is False
    session.edit_answer("typed")
    await session.advance()
    await session.settle()
    assert session.manual_input_mode
    assert h.recognizer.starts == 1
    assert not session.controls.can_use_mic

    h.recognizer.deny_with = None
    assert await session.retry_voice() is True
    assert session.capture_answer() is True
    assert h.recognizer.running


async def test_edit_refused_while_listening_but_allowed_after_stop():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")

    with pytest.raises(SessionStateError):
        session.edit_answer("typed")

    session.stop_listening()
    session.edit_answer("typed")
    assert session.current_answer == "typed"


async def test_submit_with_only_empty_answers_makes_no_call():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")

    assert await session.submit() is False

    assert h.api.finish_calls == []
    assert h.notifier.levels("warning") == ["Please answer at least one question before finishing."]
    assert session.phase is SessionPhase.REVIEWING


async def test_submit_failure_keeps_state_and_allows_retry():
    h = Harness()
    h.api.finish_results = [{"success": False}]
    session = h.session
    await session.initialize(1, "HR")
    session.stop_listening()
    session.edit_answer("only answer")

    assert await session.submit() is False
    assert session.phase is SessionPhase.SUBMITTING
    assert h.notifier.levels("error")
    assert h.visited == []

    assert await session.submit() is True
    assert session.phase is SessionPhase.DONE
    assert len(h.api.finish_calls) == 2
    assert h.api.finish_calls[1][2] == {QUESTIONS[0]: "only answer"}


async def test_teardown_is_idempotent():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")

    await session.teardown()
    counts = (
        h.recognizer.aborts,
        h.synthesizer.cancels,
        h.audio_contexts[0].closes,
        [t.stopped for t in h.devices.streams[0].tracks],
    )
    await session.teardown()

    assert counts == (
        h.recognizer.aborts,
        h.synthesizer.cancels,
        h.audio_contexts[0].closes,
        [t.stopped for t in h.devices.streams[0].tracks],
    )
    assert counts[2] == 1
    assert counts[3] == [1, 1]
    assert not session.is_recording


async def test_controls_disabled_while_question_is_spoken():
    h = Harness(synthesizer=FakeSynthesizer(hold=True))
    session = h.session
    task = asyncio.create_task(session.initialize(1, "HR"))
    await h.synthesizer.speaking.wait()

    assert session.is_speaking
    controls = session.controls
    assert not (controls.can_edit or controls.can_use_mic or controls.can_advance)
    with pytest.raises(SessionStateError):
        await session.advance()

    h.synthesizer.finish()
    await task
    assert not session.is_speaking
    assert h.recognizer.starts == 1


async def test_stopping_the_announcement_skips_capture():
    h = Harness(synthesizer=FakeSynthesizer(hold=True))
    session = h.session
    task = asyncio.create_task(session.initialize(1, "HR"))
    await h.synthesizer.speaking.wait()

    session.stop_announcement()
    await task

    assert h.synthesizer.cancels == 1
    assert not session.is_speaking
    assert h.recognizer.starts == 0
    assert session.phase is SessionPhase.REVIEWING


async def test_media_fallback_chain_degrades_step_by_step():
    h = Harness(devices=FakeMediaDevices(failures=2))
    await h.session.initialize(1, "HR")

    assert h.session.media_mode is MediaMode.AUDIO_ONLY
    assert [r["video"] is False for r in h.devices.requests] == [False, False, True]
    notices = h.notifier.levels("info")
    assert notices[0] != notices[1]
    assert not h.session.manual_input_mode


async def test_all_media_attempts_failing_enters_manual_mode():
    h = Harness(devices=FakeMediaDevices(failures=3, error="NotAllowedError"))
    session = h.session
    await session.initialize(1, "HR")

    assert session.media_mode is MediaMode.MANUAL
    assert session.manual_input_mode
    assert h.recognizer.starts == 0
    assert session.phase is SessionPhase.REVIEWING
    assert h.notifier.levels("warning")


async def test_missing_speech_recognition_preselects_manual_mode():
    h = Harness(recognizer_factory=None)
    session = h.session
    await session.initialize(1, "HR")

    assert session.capabilities is not None and not session.capabilities.speech_recognition
    assert session.manual_input_mode
    assert any("speech recognition" in m for m in h.notifier.levels("warning"))
    session.edit_answer("typed")
    await session.advance()
    assert session.index == 1


async def test_insecure_origin_skips_media_and_uses_manual_mode():
    h = Harness(secure_origin=False)
    await h.session.initialize(1, "HR")

    assert h.devices.requests == []
    assert h.session.manual_input_mode


async def test_silent_mode_without_synthesizer_still_captures():
    h = Harness()
    h.session.env.synthesizer = None
    await h.session.initialize(1, "HR")

    assert h.recognizer.starts == 1
    assert not h.session.controls.can_replay


async def test_exit_releases_resources_and_navigates():
    h = Harness()
    session = h.session
    await session.initialize(4, "HR")

    await session.exit()

    assert h.visited == ["/space/4"]
    assert session.phase is SessionPhase.ABANDONED
    assert h.recognizer.aborts == 1
    assert h.audio_contexts[0].closes == 1


async def test_progress_helpers():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")
    h.recognizer.hear(("three little words", True))
    await session.settle()

    assert session.word_count == 3
    assert session.progress_percentage == pytest.approx(100 / 3)
    assert not session.is_last_question


async def test_engine_ending_on_its_own_is_not_mistaken_for_a_renewal():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")
    lease = session._lease
    assert lease.active

    h.recognizer.stop()
    await session.settle()

    assert session.phase is SessionPhase.REVIEWING
    assert not session.is_recording
    assert not lease.active
    assert not lease.paused

    assert session.capture_answer()
    h.recognizer.stop()
    await session.settle()

    assert h.recognizer.starts == 2
    assert not h.recognizer.running
    assert not session.is_recording


async def test_failed_restart_after_renewal_stops_capture():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")
    h.recognizer.refuse_start = True

    session._lease.paused = True
    h.recognizer.stop()
    await session.settle()

    assert h.recognizer.starts == 1
    assert not session.is_recording
    assert not session._lease.active
    assert session.phase is SessionPhase.REVIEWING


async def test_audio_capture_error_switches_to_manual():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")

    h.recognizer.fail(RecognitionErrorCode.AUDIO_CAPTURE)
    await session.settle()

    assert session.manual_input_mode
    assert not session.voice_available
    assert h.notifier.levels("error") == ["No microphone could be used. Please type your answers instead."]
    assert session.phase is SessionPhase.REVIEWING
    session.edit_answer("typed instead")
    assert session.current_answer == "typed instead"


async def test_replay_reads_the_question_again_and_keeps_the_answer():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")
    h.recognizer.hear(("so far so good", True))
    await session.settle()

    await session.replay_question()

    assert [u.text for u in h.synthesizer.spoken] == [QUESTIONS[0], QUESTIONS[0]]
    assert session.phase is SessionPhase.LISTENING
    assert session.is_recording
    assert h.recognizer.starts == 2
    assert session.current_answer == "so far so good"


async def test_teardown_waits_for_background_tasks():
    h = Harness()
    session = h.session
    await session.initialize(1, "HR")
    pump = session._pump
    lease_task = session._lease._task
    assert lease_task is not None

    await session.teardown()

    assert pump.done()
    assert lease_task.done()
    assert session._pump is None
