"""Spoken prompt coordination.

Speech synthesis happens on the presentation side; this coordinator decides
*what* is said and *when*, and hands each utterance (or a cancel) to a sink.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Receives the text to speak, or None to silence the current utterance
UtteranceSink = Callable[[Optional[str]], None]


class VoiceFeedbackCoordinator:
    """At most one utterance is active; a newer one preempts the older."""

    def __init__(self, sink: UtteranceSink) -> None:
        self._sink = sink
        self._last_spoken: Optional[str] = None
        self._speaking = False

    @property
    def last_spoken(self) -> Optional[str]:
        return self._last_spoken

    def say(self, text: Optional[str]) -> bool:
        """Queue ``text`` for speech. Returns False when it was suppressed."""
        if not text or text == self._last_spoken:
            return False
        self._last_spoken = text
        self._speaking = True
        try:
            self._sink(text)
        except Exception as e:
            logger.warning("Voice sink failed for %r: %s", text, e)
            return False
        logger.debug("🔊 %s", text)
        return True

    def cancel(self) -> None:
        if not self._speaking:
            return
        self._speaking = False
        try:
            self._sink(None)
        except Exception as e:
            logger.warning("Voice sink failed on cancel: %s", e)

    def reset(self) -> None:
        self.cancel()
        self._last_spoken = None


__all__ = ["VoiceFeedbackCoordinator", "UtteranceSink"]
