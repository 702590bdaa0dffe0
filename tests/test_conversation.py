"""
Conversation Scenarios
======================
Tests the consultation driver end to end: greeting, first-turn
classification, scripted follow-ups, the results gate, speech capabilities
and session teardown while a reply is still pending.

Run with: python -m pytest tests/test_conversation.py -v
"""

from __future__ import annotations

import asyncio
import os
import sys
import unittest
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from medconsult import localization
from medconsult.conversation import (
    INPUT_VOICE,
    NARRATION_FAILED_ADVISORY,
    NO_SPEECH_ADVISORY,
    PHASE_AWAITING_FIRST_INPUT,
    PHASE_AWAITING_FOLLOW_UP,
    PHASE_CLOSED,
    PHASE_HALTED_EMERGENCY,
    PHASE_READY_FOR_RESULTS,
    ROLE_AI,
    ROLE_USER,
    ConversationDriver,
    ConversationSettings,
)
from medconsult.speech_handler import (
    SPEECH_UNAVAILABLE_ADVISORY,
    RecognitionResult,
    RecordedAudioInput,
)

IMMEDIATE = ConversationSettings(
    analysis_delay=0,
    follow_up_delay=0,
    response_delay=0,
    closing_delay=0,
    voice_submit_delay=0,
)


class FakeSpeech:
    """Speech capability that records what it speaks and replays transcripts."""

    def __init__(self, transcripts=(), speak_ok=True):
        self.transcripts = list(transcripts)
        self.speak_ok = speak_ok
        self.spoken: list[tuple[str, str]] = []
        self.capture_locales: list[str] = []

    def is_available(self):
        return True

    def start_capture(self, language="en-US", audio_path=None):
        self.capture_locales.append(language)
        for text in self.transcripts:
            yield RecognitionResult(text, False)
            yield RecognitionResult(text, True, 0.9)

    def speak(self, text, language="en-US"):
        self.spoken.append((text, language))
        return self.speak_ok


def make_driver(**kwargs) -> ConversationDriver:
    kwargs.setdefault("settings", IMMEDIATE)
    driver = ConversationDriver(kwargs.pop("health_type", "physical"), **kwargs)
    driver.start()
    return driver


class TestConversationFlow(unittest.IsolatedAsyncioTestCase):
    """Greeting, first turn and scripted follow-ups."""

    async def test_greeting_is_single_ai_message(self):
        driver = make_driver(health_type="mental")
        transcript = driver.transcript
        self.assertEqual(len(transcript), 1)
        self.assertEqual(transcript[0].role, ROLE_AI)
        self.assertIn("mental", transcript[0].content)
        self.assertEqual(driver.phase, PHASE_AWAITING_FIRST_INPUT)
        self.assertEqual(driver.turn_count, 0)
        self.assertIs(driver.start(), transcript[0])
        self.assertEqual(len(driver.transcript), 1)

    async def test_submit_before_start_is_rejected(self):
        driver = ConversationDriver("physical", settings=IMMEDIATE)
        self.assertFalse(await driver.submit("fever"))
        self.assertEqual(driver.transcript, [])

    async def test_blank_input_is_rejected(self):
        driver = make_driver()
        self.assertFalse(await driver.submit("   "))
        self.assertFalse(await driver.submit(""))
        self.assertEqual(len(driver.transcript), 1)

    async def test_first_turn_classifies_and_asks_follow_up(self):
        driver = make_driver()
        self.assertTrue(await driver.submit("I have a fever and a cough"))

        transcript = driver.transcript
        self.assertEqual([m.role for m in transcript], [ROLE_AI, ROLE_USER, ROLE_AI, ROLE_AI])
        self.assertIn("I have a fever and a cough", transcript[2].content)
        self.assertEqual(
            transcript[3].content, localization.FOLLOW_UP_QUESTIONS["en"]["medium"][0]
        )
        self.assertEqual(driver.turn_count, 1)
        self.assertEqual(driver.phase, PHASE_AWAITING_FOLLOW_UP)
        self.assertEqual(driver.analysis.urgency_level, "medium")

    async def test_emergency_halts_conversation(self):
        driver = make_driver()
        self.assertTrue(await driver.submit("I think I am having a heart attack"))

        transcript = driver.transcript
        self.assertEqual(len(transcript), 3)
        self.assertEqual(transcript[-1].content, localization.EMERGENCY_MESSAGES["en"])
        self.assertEqual(driver.phase, PHASE_HALTED_EMERGENCY)
        self.assertEqual(driver.turn_count, 1)
        self.assertFalse(await driver.submit("hello?"))
        self.assertFalse(await driver.submit("please help"))
        self.assertEqual(len(driver.transcript), 3)
        self.assertEqual(driver.turn_count, 1)
        self.assertFalse(driver.can_proceed)
        self.assertIsNone(driver.proceed())

    async def test_follow_ups_use_script_and_complete(self):
        driver = make_driver()
        script = localization.CONVERSATION_SCRIPTS["en"]

        await driver.submit("headache")
        for i, answer in enumerate(["two days", "bright light", "no medicines"], start=1):
            await driver.submit(answer)
            self.assertEqual(driver.transcript[-1].content, script[i])
            self.assertEqual(driver.turn_count, i + 1)
            self.assertFalse(driver.is_complete)

        await driver.submit("never before")
        self.assertEqual(driver.turn_count, 5)
        self.assertTrue(driver.is_complete)
        self.assertEqual(driver.phase, PHASE_READY_FOR_RESULTS)
        self.assertEqual(driver.transcript[-2].content, script[4])
        self.assertEqual(driver.transcript[-1].content, localization.CLOSING_MESSAGES["en"])
        # greeting + (user, reply, follow-up) + 4 x (user, reply) + closing
        self.assertEqual(len(driver.transcript), 13)

        self.assertFalse(await driver.submit("one more thing"))
        self.assertEqual(len(driver.transcript), 13)

    async def test_turn_count_never_decreases(self):
        driver = make_driver()
        seen = [driver.turn_count]
        for text in ["nausea", "a", "b", "", "c", "d", "e"]:
            await driver.submit(text)
            seen.append(driver.turn_count)
        self.assertEqual(seen, sorted(seen))

    async def test_unauthored_language_falls_back_to_english(self):
        driver = make_driver(language="te-IN")
        self.assertEqual(driver.language, "te")
        self.assertEqual(
            driver.transcript[0].content,
            localization.GREETINGS["en"].format(health_type="physical"),
        )
        await driver.submit("cough")
        self.assertEqual(
            driver.transcript[2].content,
            localization.MEDIUM_URGENCY_MESSAGES["en"].format(symptoms="cough"),
        )

    async def test_hindi_session(self):
        driver = make_driver(language="hi")
        await driver.submit("fever")
        await driver.submit("kal se")
        self.assertEqual(driver.transcript[-1].content, localization.CONVERSATION_SCRIPTS["hi"][1])

    def test_invalid_health_type(self):
        with self.assertRaises(ValueError):
            ConversationDriver("dental", settings=IMMEDIATE)


class TestProceedGate(unittest.IsolatedAsyncioTestCase):
    """Proceeding to results."""

    async def test_cannot_proceed_before_threshold(self):
        driver = make_driver()
        await driver.submit("fever")
        self.assertEqual(driver.turn_count, 1)
        self.assertFalse(driver.can_proceed)
        self.assertIsNone(driver.proceed())

    async def test_proceed_after_threshold(self):
        driver = make_driver(language="hi")
        await driver.submit("fever")
        await driver.submit("since yesterday")
        self.assertTrue(driver.can_proceed)

        record = driver.proceed()
        self.assertEqual(record.combined_symptom_text, "fever since yesterday")
        self.assertEqual(record.language, "hi")
        self.assertEqual(record.input_method, "text")
        self.assertEqual(record.health_type, "physical")

    async def test_thresholds_are_configurable(self):
        settings = ConversationSettings(
            analysis_delay=0,
            follow_up_delay=0,
            response_delay=0,
            closing_delay=0,
            proceed_turn_threshold=1,
            completion_step_threshold=2,
        )
        driver = make_driver(settings=settings)
        await driver.submit("fever")
        self.assertTrue(driver.can_proceed)
        await driver.submit("two days")
        self.assertFalse(driver.is_complete)
        await driver.submit("no")
        self.assertTrue(driver.is_complete)

    async def test_voice_turn_marks_record_as_voice(self):
        speech = FakeSpeech(transcripts=["I have a cough"])
        driver = make_driver(speech_input=speech)
        self.assertTrue(await driver.capture_voice())
        await driver.submit("three days")

        record = driver.proceed()
        self.assertEqual(record.combined_symptom_text, "I have a cough three days")
        self.assertEqual(record.input_method, INPUT_VOICE)


class TestSpeech(unittest.IsolatedAsyncioTestCase):
    """Speech capabilities and advisories."""

    async def test_voice_capture_uses_session_locale(self):
        speech = FakeSpeech(transcripts=["bukhar hai"])
        driver = make_driver(language="hi", speech_input=speech)
        self.assertTrue(await driver.capture_voice())
        self.assertEqual(speech.capture_locales, ["hi-IN"])
        self.assertEqual(driver.transcript[1].content, "bukhar hai")

    async def test_voice_unavailable_adds_advisory(self):
        driver = make_driver()
        self.assertFalse(await driver.capture_voice())
        self.assertEqual(driver.advisories, [SPEECH_UNAVAILABLE_ADVISORY])
        self.assertEqual(len(driver.transcript), 1)

    async def test_empty_capture_adds_advisory(self):
        driver = make_driver(speech_input=FakeSpeech())
        self.assertFalse(await driver.capture_voice())
        self.assertEqual(driver.advisories, [NO_SPEECH_ADVISORY])
        self.assertEqual(len(driver.transcript), 1)

    async def test_capture_skipped_after_emergency(self):
        speech = FakeSpeech(transcripts=["hello?"])
        driver = make_driver(speech_input=speech)
        await driver.submit("chest pain")
        self.assertEqual(driver.phase, PHASE_HALTED_EMERGENCY)

        self.assertFalse(await driver.capture_voice())
        self.assertEqual(speech.capture_locales, [])
        self.assertEqual(driver.advisories, [])
        self.assertEqual(len(driver.transcript), 3)

    async def test_capture_skipped_when_complete_or_closed(self):
        settings = ConversationSettings(
            analysis_delay=0,
            follow_up_delay=0,
            response_delay=0,
            closing_delay=0,
            voice_submit_delay=0,
            completion_step_threshold=1,
        )
        speech = FakeSpeech(transcripts=["more symptoms"])
        driver = make_driver(settings=settings, speech_input=speech)
        await driver.submit("fever")
        await driver.submit("two days")
        self.assertTrue(driver.is_complete)
        self.assertFalse(await driver.capture_voice())

        driver.close()
        self.assertFalse(await driver.capture_voice())
        self.assertEqual(speech.capture_locales, [])

    async def test_capture_from_browser_recording(self):
        handler = mock.Mock()
        handler.is_available.return_value = True
        handler.capture_recording.return_value = iter([RecognitionResult("I have a cough", True)])
        driver = make_driver(language="hi")

        source = RecordedAudioInput(handler, b"\x1aE\xdf\xa3", "audio/webm;codecs=opus")
        self.assertTrue(await driver.capture_voice(source))

        handler.capture_recording.assert_called_once_with(b"\x1aE\xdf\xa3", "hi-IN", ".webm")
        self.assertEqual(driver.transcript[1].content, "I have a cough")
        self.assertEqual(driver.advisories, [])

        await driver.submit("since monday")
        self.assertEqual(driver.proceed().input_method, INPUT_VOICE)

    async def test_empty_browser_recording_is_unavailable(self):
        handler = mock.Mock()
        handler.is_available.return_value = True
        driver = make_driver()

        self.assertFalse(await driver.capture_voice(RecordedAudioInput(handler, b"")))
        handler.capture_recording.assert_not_called()
        self.assertEqual(driver.advisories, [SPEECH_UNAVAILABLE_ADVISORY])

    async def test_speak_after_close_does_nothing(self):
        speech = FakeSpeech()
        driver = make_driver(speech_output=speech)
        greeting = driver.transcript[0]
        driver.close()
        self.assertFalse(await driver.speak(greeting.id))
        self.assertEqual(speech.spoken, [])
        self.assertEqual(driver.advisories, [])

    async def test_auto_speak_reads_new_replies_only(self):
        speech = FakeSpeech()
        driver = make_driver(speech_output=speech, auto_speak=True)
        await driver.submit("fever")
        await driver.drain()

        spoken = [text for text, _ in speech.spoken]
        self.assertNotIn(driver.transcript[0].content, spoken)
        self.assertCountEqual(spoken, [driver.transcript[2].content, driver.transcript[3].content])
        self.assertTrue(all(locale == "en-US" for _, locale in speech.spoken))

    async def test_auto_speak_off_by_default(self):
        speech = FakeSpeech()
        driver = make_driver(speech_output=speech)
        await driver.submit("fever")
        await driver.drain()
        self.assertEqual(speech.spoken, [])

    async def test_auto_speak_without_output_adds_advisory(self):
        driver = make_driver(auto_speak=True)
        await driver.submit("fever")
        self.assertEqual(driver.advisories, [SPEECH_UNAVAILABLE_ADVISORY])
        self.assertEqual(len(driver.transcript), 4)

    async def test_speak_on_request(self):
        speech = FakeSpeech()
        driver = make_driver(language="ta", speech_output=speech)
        greeting = driver.transcript[0]
        self.assertTrue(await driver.speak(greeting.id))
        self.assertEqual(speech.spoken, [(greeting.content, "ta-IN")])
        self.assertFalse(await driver.speak("missing"))

    async def test_failed_narration_adds_advisory(self):
        speech = FakeSpeech(speak_ok=False)
        driver = make_driver(speech_output=speech)
        self.assertFalse(await driver.speak(driver.transcript[0].id))
        self.assertEqual(driver.advisories, [NARRATION_FAILED_ADVISORY])


class TestTeardown(unittest.IsolatedAsyncioTestCase):
    """Serialized submissions and cancellation on close."""

    async def test_second_submit_while_pending_is_rejected(self):
        settings = ConversationSettings(analysis_delay=30, follow_up_delay=0)
        driver = make_driver(settings=settings)

        first = asyncio.create_task(driver.submit("fever"))
        await asyncio.sleep(0)
        self.assertTrue(driver.is_busy)
        self.assertFalse(await driver.submit("and a cough"))
        self.assertEqual(len(driver.transcript), 2)

        await driver.aclose()
        self.assertTrue(await first)

    async def test_close_during_pending_reply_appends_nothing(self):
        settings = ConversationSettings(
            analysis_delay=0, follow_up_delay=0, response_delay=30, closing_delay=0
        )
        driver = make_driver(settings=settings)
        await driver.submit("fever")
        self.assertEqual(len(driver.transcript), 4)

        pending = asyncio.create_task(driver.submit("two days"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        before = driver.transcript
        turn_before = driver.turn_count

        await driver.aclose()
        await pending
        await asyncio.sleep(0)

        self.assertEqual(driver.transcript, before)
        self.assertEqual(driver.turn_count, turn_before)
        self.assertEqual(driver.phase, PHASE_CLOSED)
        self.assertFalse(await driver.submit("still there?"))
        self.assertIsNone(driver.proceed())

    async def test_close_is_idempotent(self):
        driver = make_driver()
        driver.close()
        driver.close()
        await driver.aclose()
        self.assertEqual(driver.phase, PHASE_CLOSED)


class TestSettings(unittest.TestCase):
    """Settings loaded from the environment."""

    def test_defaults(self):
        settings = ConversationSettings()
        self.assertEqual(settings.proceed_turn_threshold, 2)
        self.assertEqual(settings.completion_step_threshold, 4)
        self.assertEqual(settings.analysis_delay, 2.0)

    def test_from_env(self):
        env = {
            "CONSULT_ANALYSIS_DELAY": "0.25",
            "CONSULT_PROCEED_TURN_THRESHOLD": "not-a-number",
            "CONSULT_COMPLETION_STEP_THRESHOLD": "6",
        }
        with mock.patch.dict(os.environ, env):
            settings = ConversationSettings.from_env()
        self.assertEqual(settings.analysis_delay, 0.25)
        self.assertEqual(settings.proceed_turn_threshold, 2)
        self.assertEqual(settings.completion_step_threshold, 6)


if __name__ == "__main__":
    unittest.main()
