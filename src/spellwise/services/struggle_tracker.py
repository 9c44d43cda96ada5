"""Struggle tracker: adds and retires review words from session attempts.

Words are added when the first attempt at them in a session is wrong or
when any attempt hesitates past the threshold. A word already in the set
climbs toward retirement with each clean correct attempt; a wrong or
hesitant attempt drops it back to zero. Attempts are applied one by one in
timestamp order. Words are keyed by their library form, so "Cat" and
"cat" are the same word.
"""
import logging
from dataclasses import replace
from typing import Dict, Iterable, Optional, Set

from spellwise import monitoring
from spellwise.config import EngineSettings, settings as global_settings
from spellwise.models.progress_models import Attempt, StruggleWord, ThresholdParams
from spellwise.services.word_library import normalize_word

logger = logging.getLogger(__name__)

StruggleSet = Dict[str, StruggleWord]


class StruggleTracker:
    """Computes a learner's new struggle set from one session's attempts."""

    def __init__(self, settings: Optional[EngineSettings] = None):
        """Initialize the tracker with engine thresholds."""
        self.settings = settings or global_settings.engine

    def hesitation_threshold_ms(self, word: str, params: Optional[ThresholdParams] = None) -> float:
        """Hesitation cutoff for a word.

        Uses the learner's calibrated parameters when given, the configured
        fixed threshold otherwise.
        """
        length = len(normalize_word(word))
        if params is not None:
            return params.threshold_ms(length)
        return self.settings.hesitation_threshold_ms + length * self.settings.hesitation_per_char_ms

    def is_hesitant(self, attempt: Attempt, params: Optional[ThresholdParams] = None) -> bool:
        """Check whether an attempt paused longer than the word's cutoff."""
        return attempt.hesitation_ms > self.hesitation_threshold_ms(attempt.word, params)

    def update(self, attempts: Iterable[Attempt], struggle_set: StruggleSet,
               params: Optional[ThresholdParams] = None) -> StruggleSet:
        """Apply ordered attempts to a struggle set and return the new set.

        The input set is not modified.
        """
        result: StruggleSet = dict(struggle_set)
        seen: Set[str] = set()

        for attempt in attempts:
            word = normalize_word(attempt.word)
            first_attempt = word not in seen
            seen.add(word)
            hesitant = self.is_hesitant(attempt, params)
            flagged = hesitant or (first_attempt and not attempt.correct)

            existing = result.get(word)
            if existing is None:
                if flagged:
                    result[word] = StruggleWord(
                        word=word,
                        added_at_ordinal=attempt.timestamp_ordinal,
                        consecutive_correct=0,
                    )
                    monitoring.struggle_words_added.inc()
                    logger.debug(f"Added '{word}' to struggle set at ordinal {attempt.timestamp_ordinal}")
                continue

            if not attempt.correct or hesitant:
                if existing.consecutive_correct:
                    logger.debug(f"Reset '{word}' after {existing.consecutive_correct} correct")
                result[word] = replace(existing, consecutive_correct=0)
                continue

            consecutive = existing.consecutive_correct + 1
            if consecutive >= self.settings.retirement_threshold:
                del result[word]
                monitoring.struggle_words_retired.inc()
                logger.debug(f"Retired '{word}' after {consecutive} consecutive correct")
            else:
                result[word] = replace(existing, consecutive_correct=consecutive)

        return result

    def status(self, struggle_word: StruggleWord) -> str:
        """Describe progress toward retirement: struggling, improving or mastered."""
        if struggle_word.consecutive_correct == 0:
            return "struggling"
        if struggle_word.consecutive_correct >= self.settings.retirement_threshold:
            return "mastered"
        return "improving"
