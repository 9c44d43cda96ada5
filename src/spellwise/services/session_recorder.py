"""Session recording and folding of sealed sessions into progress records."""
import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from spellwise import monitoring
from spellwise.config import BASE_LEVEL
from spellwise.exceptions import MalformedSessionError
from spellwise.models.progress_models import (
    Attempt,
    GroupMastery,
    PracticeSession,
    ProgressRecord,
    SessionSummary,
    ThresholdParams,
)
from spellwise.services.level_calculator import LevelCalculator
from spellwise.services.struggle_tracker import StruggleTracker
from spellwise.services.threshold_calculator import adjust_from_session
from spellwise.services.word_library import WordLibrary, normalize_word

logger = logging.getLogger(__name__)


class ActiveSession:
    """A session in progress. Attempts are appended until it is sealed."""

    def __init__(self, session_id: str, learner_id: str, start_ordinal: int, level_at_start: int = BASE_LEVEL):
        self.id = session_id
        self.learner_id = learner_id
        self.start_ordinal = start_ordinal
        self.level_at_start = level_at_start
        self.attempts: List[Attempt] = []
        self.is_sealed = False

    def record_attempt(self, word: str, correct: bool, hesitation_ms: int = 0,
                       timestamp_ordinal: Optional[int] = None) -> Attempt:
        """Record an attempt. Without an ordinal, the next one in sequence is used."""
        if self.is_sealed:
            raise MalformedSessionError(f"Session {self.id} is already sealed")
        if timestamp_ordinal is None:
            timestamp_ordinal = self.attempts[-1].timestamp_ordinal + 1 if self.attempts else self.start_ordinal
        last = self.attempts[-1].timestamp_ordinal if self.attempts else None
        if timestamp_ordinal < self.start_ordinal or (last is not None and timestamp_ordinal <= last):
            raise MalformedSessionError(
                f"Attempt ordinal {timestamp_ordinal} is out of order in session {self.id}"
            )
        attempt = Attempt(
            word=word,
            correct=correct,
            hesitation_ms=hesitation_ms,
            timestamp_ordinal=timestamp_ordinal,
        )
        self.attempts.append(attempt)
        return attempt

    def seal(self) -> PracticeSession:
        """Finish the session and return its immutable form."""
        if self.is_sealed:
            raise MalformedSessionError(f"Session {self.id} is already sealed")
        self.is_sealed = True
        return PracticeSession(
            id=self.id,
            learner_id=self.learner_id,
            start_ordinal=self.start_ordinal,
            attempts=tuple(self.attempts),
            level_at_start=self.level_at_start,
            sealed=True,
        )

    def abandon(self) -> PracticeSession:
        """Stop practice early. Attempts made so far are kept and the session is sealed."""
        logger.info(f"Session {self.id} abandoned after {len(self.attempts)} attempts")
        return self.seal()


class SessionRecorder:
    """Folds sealed sessions into progress records."""

    def __init__(self, library: WordLibrary, tracker: Optional[StruggleTracker] = None,
                 calculator: Optional[LevelCalculator] = None):
        self.library = library
        self.tracker = tracker or StruggleTracker()
        self.calculator = calculator or LevelCalculator(library)

    def start_session(self, session_id: str, learner_id: str, start_ordinal: int,
                      level_at_start: int = BASE_LEVEL) -> ActiveSession:
        """Begin a new practice session."""
        return ActiveSession(session_id, learner_id, start_ordinal, level_at_start)

    def validate(self, session: PracticeSession) -> None:
        """Reject sessions that must not be folded."""
        if not session.sealed:
            raise MalformedSessionError(f"Session {session.id} is not sealed")
        previous = None
        for attempt in session.attempts:
            if attempt.timestamp_ordinal < session.start_ordinal:
                raise MalformedSessionError(
                    f"Attempt ordinal {attempt.timestamp_ordinal} precedes the start of session {session.id}"
                )
            if previous is not None and attempt.timestamp_ordinal <= previous:
                raise MalformedSessionError(
                    f"Attempts of session {session.id} are out of timestamp order"
                )
            previous = attempt.timestamp_ordinal

    def _first_attempts(self, session: PracticeSession) -> "OrderedDict[str, Attempt]":
        """First attempt at each distinct word, keyed by its library form."""
        firsts: "OrderedDict[str, Attempt]" = OrderedDict()
        for attempt in session.attempts:
            firsts.setdefault(normalize_word(attempt.word), attempt)
        return firsts

    def _group_samples(self, session: PracticeSession) -> Tuple[Dict[str, Tuple[int, int]], List[str]]:
        """One sample per distinct word, correct when its first attempt was."""
        samples: Dict[str, Tuple[int, int]] = {}
        gaps: List[str] = []
        for word, attempt in self._first_attempts(session).items():
            entry = self.library.lookup(word)
            if entry is None:
                gaps.append(word)
                continue
            correct, total = samples.get(entry.phonics_group, (0, 0))
            samples[entry.phonics_group] = (correct + int(attempt.correct), total + 1)
        return samples, gaps

    def summarize(self, session: PracticeSession,
                  threshold_params: Optional[ThresholdParams] = None) -> SessionSummary:
        """Build the immutable summary of a session."""
        firsts = self._first_attempts(session)
        samples, gaps = self._group_samples(session)
        words_correct = sum(1 for a in firsts.values() if a.correct)
        total_hesitation = sum(a.hesitation_ms for a in session.attempts)
        struggled = []
        for attempt in session.attempts:
            word = normalize_word(attempt.word)
            if word in struggled:
                continue
            if self.tracker.is_hesitant(attempt, threshold_params) or (firsts[word] is attempt and not attempt.correct):
                struggled.append(word)
        ordinals = [a.timestamp_ordinal for a in session.attempts]
        return SessionSummary(
            session_id=session.id,
            learner_id=session.learner_id,
            words_attempted=len(firsts),
            words_correct=words_correct,
            attempts=len(session.attempts),
            accuracy=words_correct / len(firsts) if firsts else 0.0,
            struggled_words=struggled,
            total_hesitation_ms=total_hesitation,
            average_hesitation_ms=total_hesitation / len(session.attempts) if session.attempts else 0.0,
            first_ordinal=min(ordinals) if ordinals else None,
            last_ordinal=max(ordinals) if ordinals else None,
            group_breakdown=samples,
            lookup_gaps=gaps,
        )

    def fold_session(self, session: PracticeSession, prior: ProgressRecord) -> ProgressRecord:
        """Fold a sealed session into a progress record and return the new record.

        The caller must fold each session id at most once; the progress store
        enforces that. ``prior`` is left untouched.
        """
        self.validate(session)

        samples, gaps = self._group_samples(session)
        for word in gaps:
            logger.warning(f"Word '{word}' of session {session.id} is not in the word library")
            monitoring.lookup_gaps.inc()

        group_mastery = dict(prior.group_mastery)
        for group, (correct, total) in samples.items():
            current = group_mastery.get(group, GroupMastery(phonics_group=group))
            group_mastery[group] = current.add(correct, total)

        distinct_words = sum(total for _, total in samples.values()) + len(gaps)
        struggle_set = self.tracker.update(session.attempts, prior.struggle_set, prior.threshold_params)
        threshold_params = prior.threshold_params
        if threshold_params is not None:
            threshold_params = adjust_from_session(threshold_params, session.attempts, self.tracker.settings)
        level = self.calculator.current_level(group_mastery)

        record = replace(
            prior,
            total_words=prior.total_words + distinct_words,
            total_sessions=prior.total_sessions + 1,
            struggle_set=struggle_set,
            group_mastery=group_mastery,
            current_level=level,
            unclassified_words=prior.unclassified_words + len(gaps),
            threshold_params=threshold_params,
        )
        logger.info(
            f"Folded session {session.id}: {distinct_words} words, "
            f"{len(struggle_set)} struggle words, level {prior.current_level} -> {level}"
        )
        return record
