"""
Contextual Responder Module
===========================
Produces the assistant's reply for every turn after the first.

The reply is a line from a canned, per-language script indexed by the
number of earlier user turns. The index is clamped to the last line, so
once the script runs out the final line repeats on every later turn. The
user's text is not inspected.
"""

from __future__ import annotations

import logging
from typing import Sequence

from medconsult import localization

logger = logging.getLogger(__name__)


def script_for(language: str) -> list[str]:
    """The scripted follow-up lines used for ``language``."""
    return localization.resolve("conversation_script", language)


def respond(
    user_input: str,
    prior_user_turns: Sequence[str],
    language: str = localization.DEFAULT_LANGUAGE,
) -> str:
    """Select the scripted reply for the next turn.

    Args:
        user_input: The message being answered. Not parsed.
        prior_user_turns: User messages sent before ``user_input``.
        language: Language tag; unauthored languages use the English script.

    Returns:
        ``script[min(len(prior_user_turns), len(script) - 1)]``.
    """
    script = script_for(language)
    index = min(len(prior_user_turns), len(script) - 1)
    logger.debug("Scripted reply %d/%d (lang=%s).", index + 1, len(script), language)
    return script[index]
