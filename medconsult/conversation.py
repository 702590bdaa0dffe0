"""
Conversation Module
===================
Turn-based driver for the symptom consultation chat.

The driver owns one session's transcript and moves through these phases:

    greeting -> awaiting_first_input -> awaiting_follow_up (turn k) -> ready_for_results

plus two terminal phases, ``halted_emergency`` and ``closed``.

The first user message is classified once by the symptom classifier. Every
later message is answered by the contextual responder. "Thinking" latency is
simulated with asyncio sleeps inside one pending task per submission, so a
teardown can cancel it and nothing is appended to a discarded session.

Submissions are serialized: while a response is pending, a new submission is
rejected.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal, Optional, Sequence
from uuid import uuid4

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from medconsult import localization
from medconsult.contextual_responder import respond
from medconsult.speech_handler import SPEECH_UNAVAILABLE_ADVISORY, NullSpeech
from medconsult.symptom_classifier import SymptomAnalysis, classify

load_dotenv()
logger = logging.getLogger(__name__)

HEALTH_PHYSICAL = "physical"
HEALTH_MENTAL = "mental"
HEALTH_TYPES = (HEALTH_PHYSICAL, HEALTH_MENTAL)

INPUT_TEXT = "text"
INPUT_VOICE = "voice"

ROLE_USER = "user"
ROLE_AI = "ai"

PHASE_GREETING = "greeting"
PHASE_AWAITING_FIRST_INPUT = "awaiting_first_input"
PHASE_AWAITING_FOLLOW_UP = "awaiting_follow_up"
PHASE_READY_FOR_RESULTS = "ready_for_results"
PHASE_HALTED_EMERGENCY = "halted_emergency"
PHASE_CLOSED = "closed"

NO_SPEECH_ADVISORY = "No speech was recognized. Please try again or type your message."
NARRATION_FAILED_ADVISORY = "The assistant's reply could not be read aloud."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """One transcript entry. Never modified after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    role: Literal["user", "ai"]
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class ConversationState(BaseModel):
    """Mutable session state, written only by ``ConversationDriver``."""

    transcript: list[Message] = Field(default_factory=list)
    turn_count: int = 0
    language: str = localization.DEFAULT_LANGUAGE
    is_complete: bool = False
    phase: str = PHASE_GREETING


class SymptomRecord(BaseModel):
    """What the chat hands to the results stage."""

    model_config = ConfigDict(frozen=True)

    combined_symptom_text: str
    language: str
    input_method: Literal["text", "voice"]
    health_type: Literal["physical", "mental"]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s.", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s.", name, raw, default)
        return default


@dataclass(frozen=True)
class ConversationSettings:
    """Latency and threshold settings for a consultation session.

    Attributes:
        analysis_delay: Seconds before the classifier's reply appears.
        follow_up_delay: Seconds between that reply and the first follow-up question.
        response_delay: Seconds before each scripted reply.
        closing_delay: Seconds before the closing message.
        voice_submit_delay: Seconds between a final transcript and its submission.
        proceed_turn_threshold: Turn count from which the patient may proceed
            to results on their own.
        completion_step_threshold: Once a reply is sent at this turn or later,
            the closing message follows and the chat is complete.
    """

    analysis_delay: float = 2.0
    follow_up_delay: float = 2.0
    response_delay: float = 1.5
    closing_delay: float = 3.0
    voice_submit_delay: float = 0.5
    proceed_turn_threshold: int = 2
    completion_step_threshold: int = 4

    @classmethod
    def from_env(cls) -> "ConversationSettings":
        """Build settings from ``CONSULT_*`` environment variables."""
        defaults = cls()
        return cls(
            analysis_delay=_env_float("CONSULT_ANALYSIS_DELAY", defaults.analysis_delay),
            follow_up_delay=_env_float("CONSULT_FOLLOW_UP_DELAY", defaults.follow_up_delay),
            response_delay=_env_float("CONSULT_RESPONSE_DELAY", defaults.response_delay),
            closing_delay=_env_float("CONSULT_CLOSING_DELAY", defaults.closing_delay),
            voice_submit_delay=_env_float("CONSULT_VOICE_SUBMIT_DELAY", defaults.voice_submit_delay),
            proceed_turn_threshold=_env_int(
                "CONSULT_PROCEED_TURN_THRESHOLD", defaults.proceed_turn_threshold
            ),
            completion_step_threshold=_env_int(
                "CONSULT_COMPLETION_STEP_THRESHOLD", defaults.completion_step_threshold
            ),
        )


class ConversationDriver:
    """Drives one consultation chat from greeting to results.

    Health type and language are fixed for the session. Speech capabilities
    are optional collaborators; without them the chat is text-only.

    Attributes:
        health_type: 'physical' or 'mental'.
        language: Base language tag of the session.
        settings: ConversationSettings in effect.
        state: ConversationState (transcript, turn count, phase).
        analysis: SymptomAnalysis of the first message, once classified.
        advisories: User-visible notices about degraded capabilities.
        auto_speak: Speak each new ai message aloud. Off by default.
    """

    def __init__(
        self,
        health_type: str,
        language: str = localization.DEFAULT_LANGUAGE,
        *,
        settings: Optional[ConversationSettings] = None,
        speech_input=None,
        speech_output=None,
        auto_speak: bool = False,
        classifier: Callable[[str, str], SymptomAnalysis] = classify,
        responder: Callable[[str, Sequence[str], str], str] = respond,
    ) -> None:
        if health_type not in HEALTH_TYPES:
            raise ValueError(
                f"Unknown health type {health_type!r}; expected one of {HEALTH_TYPES}"
            )
        self.health_type = health_type
        self.language = localization.normalize_language(language)
        self.settings = settings or ConversationSettings.from_env()
        self.speech_input = speech_input or NullSpeech()
        self.speech_output = speech_output or NullSpeech()
        self.auto_speak = auto_speak
        self.state = ConversationState(language=self.language)
        self.analysis: Optional[SymptomAnalysis] = None
        self.advisories: list[str] = []

        self._classifier = classifier
        self._responder = responder
        self._pending: Optional[asyncio.Task] = None
        self._speech_tasks: set[asyncio.Task] = set()
        self._voice_turns = 0
        self._closed = False

        missing = localization.fallback_tables(self.language)
        if missing:
            logger.info(
                "Language '%s' uses English content for: %s",
                self.language,
                ", ".join(missing),
            )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def transcript(self) -> list[Message]:
        return list(self.state.transcript)

    @property
    def turn_count(self) -> int:
        return self.state.turn_count

    @property
    def is_complete(self) -> bool:
        return self.state.is_complete

    @property
    def phase(self) -> str:
        return self.state.phase

    @property
    def is_busy(self) -> bool:
        """True while a simulated response is still pending."""
        return self._pending is not None and not self._pending.done()

    @property
    def user_turns(self) -> list[str]:
        return [m.content for m in self.state.transcript if m.role == ROLE_USER]

    @property
    def can_proceed(self) -> bool:
        """Whether the patient may move on to results now."""
        if self.phase in (PHASE_HALTED_EMERGENCY, PHASE_CLOSED) or self.is_busy:
            return False
        return self.is_complete or self.turn_count >= self.settings.proceed_turn_threshold

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Message:
        """Post the greeting. Calling it again returns the same greeting."""
        if self.state.transcript:
            return self.state.transcript[0]
        if self._closed:
            raise RuntimeError("Cannot start a closed consultation session.")

        greeting = localization.resolve("greeting", self.language).format(
            health_type=self.health_type
        )
        message = Message(role=ROLE_AI, content=greeting)
        self.state.transcript.append(message)
        self.state.phase = PHASE_AWAITING_FIRST_INPUT
        logger.info(
            "Consultation started (health_type=%s, lang=%s).", self.health_type, self.language
        )
        return message

    def close(self) -> None:
        """Tear down the session and cancel anything still pending."""
        if self._closed:
            return
        self._closed = True
        self.state.phase = PHASE_CLOSED
        for task in (self._pending, *self._speech_tasks):
            if task is not None and not task.done():
                task.cancel()
        logger.info("Consultation closed after %d turn(s).", self.state.turn_count)

    async def aclose(self) -> None:
        """Close and wait for cancelled tasks to finish unwinding."""
        tasks = [t for t in (self._pending, *self._speech_tasks) if t is not None]
        self.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for the pending response and any narration to finish."""
        tasks = [t for t in (self._pending, *self._speech_tasks) if t is not None and not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def _rejection_reason(self, text: str) -> Optional[str]:
        if not text.strip():
            return "blank input"
        return self._state_rejection_reason()

    def _state_rejection_reason(self) -> Optional[str]:
        if self._closed:
            return "session closed"
        if self.phase == PHASE_GREETING:
            return "session not started"
        if self.is_busy:
            return "a response is still pending"
        if self.phase == PHASE_HALTED_EMERGENCY:
            return "session halted after an emergency alert"
        if self.phase == PHASE_READY_FOR_RESULTS:
            return "conversation already complete"
        return None

    async def submit(self, text: str, input_method: str = INPUT_TEXT) -> bool:
        """Add a user message and wait for the assistant's reply.

        Args:
            text: The patient's message.
            input_method: 'text' or 'voice'.

        Returns:
            True if the message was accepted, False if it was rejected
            without any state change.
        """
        reason = self._rejection_reason(text or "")
        if reason:
            log = logger.debug if reason == "blank input" else logger.info
            log("Submission rejected: %s.", reason)
            return False

        content = text.strip()
        prior_turns = self.user_turns
        first_turn = self.phase == PHASE_AWAITING_FIRST_INPUT

        self.state.transcript.append(Message(role=ROLE_USER, content=content))
        if input_method == INPUT_VOICE:
            self._voice_turns += 1

        if first_turn:
            self._pending = asyncio.create_task(self._answer_first(content))
        else:
            self._pending = asyncio.create_task(self._answer_follow_up(content, prior_turns))

        try:
            await self._pending
        except asyncio.CancelledError:
            if not self._closed:
                raise
            logger.info("Pending response dropped: session closed.")
        return True

    async def _answer_first(self, content: str) -> None:
        analysis = self._classifier(content, self.language)
        self.analysis = analysis

        await asyncio.sleep(self.settings.analysis_delay)
        self._append_ai(analysis.response_text)
        self.state.turn_count = 1

        if analysis.is_emergency:
            self.state.phase = PHASE_HALTED_EMERGENCY
            logger.warning("Emergency classification; consultation halted.")
            return

        if analysis.follow_up_questions:
            await asyncio.sleep(self.settings.follow_up_delay)
            self._append_ai(analysis.follow_up_questions[0])
        self.state.phase = PHASE_AWAITING_FOLLOW_UP

    async def _answer_follow_up(self, content: str, prior_turns: list[str]) -> None:
        reply = self._responder(content, prior_turns, self.language)

        await asyncio.sleep(self.settings.response_delay)
        self._append_ai(reply)
        previous_turn = self.state.turn_count
        self.state.turn_count = previous_turn + 1

        if previous_turn >= self.settings.completion_step_threshold:
            await asyncio.sleep(self.settings.closing_delay)
            self._append_ai(localization.resolve("closing_message", self.language))
            self.state.is_complete = True
            self.state.phase = PHASE_READY_FOR_RESULTS
            logger.info("Consultation complete after %d turn(s).", self.state.turn_count)

    def _append_ai(self, content: str) -> Optional[Message]:
        if self._closed:
            return None
        message = Message(role=ROLE_AI, content=content)
        self.state.transcript.append(message)
        if self.auto_speak:
            self._narrate(content)
        return message

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    def _advise(self, advisory: str) -> None:
        if advisory not in self.advisories:
            self.advisories.append(advisory)
            logger.warning("%s", advisory)

    def _narrate(self, text: str) -> Optional[asyncio.Task]:
        if not self.speech_output.is_available():
            self._advise(SPEECH_UNAVAILABLE_ADVISORY)
            return None
        task = asyncio.create_task(self._speak_text(text))
        self._speech_tasks.add(task)
        task.add_done_callback(self._speech_tasks.discard)
        return task

    async def _speak_text(self, text: str) -> bool:
        locale = localization.speech_locale(self.language)
        try:
            spoken = await asyncio.to_thread(self.speech_output.speak, text, locale)
        except Exception as exc:
            logger.error("Speech output error: %s", exc)
            spoken = False
        if not spoken:
            self._advise(NARRATION_FAILED_ADVISORY)
        return spoken

    async def speak(self, message_id: str) -> bool:
        """Read one transcript message aloud on request.

        Returns:
            True once the message has been spoken.
        """
        if self._closed:
            logger.info("Session closed; not speaking message %s.", message_id)
            return False
        message = next((m for m in self.state.transcript if m.id == message_id), None)
        if message is None:
            logger.warning("No message %s to speak.", message_id)
            return False
        if not self.speech_output.is_available():
            self._advise(SPEECH_UNAVAILABLE_ADVISORY)
            return False
        return await self._speak_text(message.content)

    async def capture_voice(self, source=None) -> bool:
        """Listen for one utterance and submit it as a voice message.

        Args:
            source: Speech input to capture from for this call (e.g. a
                ``RecordedAudioInput``). Defaults to the session's speech input.

        Returns:
            True if a transcript was captured and accepted.
        """
        reason = self._state_rejection_reason()
        if reason:
            logger.info("Voice capture skipped: %s.", reason)
            return False

        speech_input = source or self.speech_input
        if not speech_input.is_available():
            self._advise(SPEECH_UNAVAILABLE_ADVISORY)
            return False

        locale = localization.speech_locale(self.language)
        try:
            results = await asyncio.to_thread(lambda: list(speech_input.start_capture(locale)))
        except Exception as exc:
            logger.error("Speech capture error: %s", exc)
            self._advise(SPEECH_UNAVAILABLE_ADVISORY)
            return False

        transcript = " ".join(r.transcript for r in results if r.is_final).strip()
        if not transcript:
            self._advise(NO_SPEECH_ADVISORY)
            return False

        await asyncio.sleep(self.settings.voice_submit_delay)
        return await self.submit(transcript, INPUT_VOICE)

    # ------------------------------------------------------------------
    # Session exit
    # ------------------------------------------------------------------

    def proceed(self) -> Optional[SymptomRecord]:
        """Finish the chat and build the record for the results stage.

        Returns:
            SymptomRecord, or None if proceeding is not allowed yet.
        """
        if not self.can_proceed:
            logger.warning(
                "Proceed refused (phase=%s, turn=%d, complete=%s).",
                self.phase,
                self.turn_count,
                self.is_complete,
            )
            return None

        record = SymptomRecord(
            combined_symptom_text=" ".join(self.user_turns),
            language=self.language,
            input_method=INPUT_VOICE if self._voice_turns else INPUT_TEXT,
            health_type=self.health_type,
        )
        logger.info(
            "Symptom record ready (%d user turn(s), input=%s).",
            len(self.user_turns),
            record.input_method,
        )
        return record
