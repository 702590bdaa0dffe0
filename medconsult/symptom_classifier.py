"""
Symptom Classifier Module
=========================
Rule-based urgency classification of a patient's first symptom description.

The classifier checks three keyword sets in a fixed priority order
(emergency, high, medium) and falls back to low urgency. Priority decides,
not specificity: "severe headache" matches both the high set and the medium
set ("headache") and is classified high because the high set is checked
first. An emergency match short-circuits everything else.

All patient-facing text comes from the localization tables and falls back to
English for languages without authored content.
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict

from medconsult import localization

logger = logging.getLogger(__name__)

# Urgency level constants
URGENCY_HIGH = "high"
URGENCY_MEDIUM = "medium"
URGENCY_LOW = "low"

UrgencyLevel = Literal["low", "medium", "high"]

# Ordered by priority; the first matching set wins.
EMERGENCY_KEYWORDS: tuple[str, ...] = (
    "chest pain", "difficulty breathing", "severe bleeding", "unconscious",
    "heart attack", "stroke", "severe allergic reaction", "suicide", "self harm",
)
HIGH_URGENCY_KEYWORDS: tuple[str, ...] = (
    "severe pain", "high fever", "vomiting blood", "severe headache",
    "vision loss", "difficulty swallowing", "severe abdominal pain",
)
MEDIUM_URGENCY_KEYWORDS: tuple[str, ...] = (
    "fever", "headache", "nausea", "dizziness", "fatigue", "cough",
    "sore throat", "body ache", "stomach pain",
)

EMERGENCY_CALL_ACTION = "Call emergency services immediately"

EMERGENCY_ACTIONS: tuple[str, ...] = (EMERGENCY_CALL_ACTION, "Go to nearest emergency room")
HIGH_URGENCY_ACTIONS: tuple[str, ...] = ("Consult a doctor within 24 hours", "Monitor symptoms closely")
MEDIUM_URGENCY_ACTIONS: tuple[str, ...] = ("Rest and monitor symptoms", "Consider seeing a doctor if symptoms persist")
LOW_URGENCY_ACTIONS: tuple[str, ...] = ("Monitor symptoms", "Maintain good health practices")

URGENCY_COLORS = {
    URGENCY_HIGH: "🔴",
    URGENCY_MEDIUM: "🟠",
    URGENCY_LOW: "🟢",
}


class SymptomAnalysis(BaseModel):
    """Result of classifying one symptom description."""

    model_config = ConfigDict(frozen=True)

    response_text: str
    follow_up_questions: tuple[str, ...] = ()
    urgency_level: UrgencyLevel
    suggested_actions: tuple[str, ...] = ()

    @property
    def is_emergency(self) -> bool:
        """True when the classification asks the patient to call emergency services."""
        return (
            self.urgency_level == URGENCY_HIGH
            and EMERGENCY_CALL_ACTION in self.suggested_actions
        )


def _matches(text_lower: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text_lower for keyword in keywords)


def matched_keywords(symptoms: str) -> list[str]:
    """All keywords from every set found in the text, in priority order.

    Only used for logging and display; classification itself stops at the
    first matching set.
    """
    lowered = symptoms.lower()
    return [
        kw
        for keywords in (EMERGENCY_KEYWORDS, HIGH_URGENCY_KEYWORDS, MEDIUM_URGENCY_KEYWORDS)
        for kw in keywords
        if kw in lowered
    ]


def _follow_up_questions(urgency: str, language: str) -> tuple[str, ...]:
    questions = localization.resolve("follow_up_questions", language)
    return tuple(questions.get(urgency, questions[URGENCY_MEDIUM]))


def classify(symptoms: str, language: str = localization.DEFAULT_LANGUAGE) -> SymptomAnalysis:
    """Classify a free-text symptom description by urgency.

    Callers must not pass blank text; rejecting empty input is the
    conversation layer's job.

    Args:
        symptoms: The patient's description, echoed back with its casing intact.
        language: Language tag for the response text and follow-up questions.

    Returns:
        SymptomAnalysis with response text, follow-up questions, urgency
        level and suggested actions.
    """
    lowered = symptoms.lower()

    if _matches(lowered, EMERGENCY_KEYWORDS):
        logger.warning("Emergency keywords detected in: '%s'", symptoms[:60])
        return SymptomAnalysis(
            response_text=localization.resolve("emergency_message", language),
            follow_up_questions=(),
            urgency_level=URGENCY_HIGH,
            suggested_actions=EMERGENCY_ACTIONS,
        )

    if _matches(lowered, HIGH_URGENCY_KEYWORDS):
        urgency, table, actions = URGENCY_HIGH, "high_urgency_message", HIGH_URGENCY_ACTIONS
    elif _matches(lowered, MEDIUM_URGENCY_KEYWORDS):
        urgency, table, actions = URGENCY_MEDIUM, "medium_urgency_message", MEDIUM_URGENCY_ACTIONS
    else:
        urgency, table, actions = URGENCY_LOW, "low_urgency_message", LOW_URGENCY_ACTIONS

    logger.info("Classified '%s' as %s (lang=%s).", symptoms[:60], urgency, language)
    return SymptomAnalysis(
        response_text=localization.resolve(table, language).format(symptoms=symptoms),
        follow_up_questions=_follow_up_questions(urgency, language),
        urgency_level=urgency,
        suggested_actions=actions,
    )
