"""Value types shared by the mastery engine components."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from spellwise.config import BASE_LEVEL


class MasteryTier(Enum):
    """Accuracy tier of a phonics group."""
    NOT_STARTED = "not_started"  # No attempts recorded yet
    NOT_MASTERED = "not_mastered"  # Below the learning threshold
    IN_PROGRESS = "in_progress"  # Between learning and mastery thresholds
    MASTERED = "mastered"  # At or above the mastery threshold


@dataclass(frozen=True)
class WordEntry:
    """A word of the library tagged with its phonics group and difficulty."""
    word: str
    phonics_group: str
    difficulty_level: int


@dataclass(frozen=True)
class Attempt:
    """One word-level outcome produced during a session."""
    word: str
    correct: bool
    hesitation_ms: int = 0
    timestamp_ordinal: int = 0


@dataclass(frozen=True)
class PracticeSession:
    """A practice session. Only sealed sessions may be folded."""
    id: str
    learner_id: str
    start_ordinal: int
    attempts: Tuple[Attempt, ...] = ()
    level_at_start: int = BASE_LEVEL
    sealed: bool = False


@dataclass(frozen=True)
class StruggleWord:
    """Membership of a word in a learner's review set."""
    word: str
    added_at_ordinal: int
    consecutive_correct: int = 0


@dataclass(frozen=True)
class GroupMastery:
    """Cumulative correct/total counts for one phonics group."""
    phonics_group: str
    correct_count: int = 0
    total_count: int = 0

    @property
    def accuracy(self) -> float:
        """Share of correct samples, 0.0 when nothing has been attempted."""
        if self.total_count == 0:
            return 0.0
        return self.correct_count / self.total_count

    def add(self, correct: int, total: int) -> "GroupMastery":
        """Return a copy with the given counts added."""
        return replace(
            self,
            correct_count=self.correct_count + correct,
            total_count=self.total_count + total,
        )


@dataclass(frozen=True)
class LevelResult:
    """Output of the level calculator."""
    current_level: int
    tiers: Dict[str, MasteryTier] = field(default_factory=dict)


@dataclass(frozen=True)
class ThresholdParams:
    """A learner's calibrated hesitation threshold.

    The cutoff for a word is ``(base_ms + len(word) * per_char_ms) * safety_multiplier``.
    """
    base_ms: float
    per_char_ms: float
    safety_multiplier: float
    word_count: int = 0  # timings the calibration is based on

    def threshold_ms(self, word_length: int) -> float:
        """Hesitation cutoff for a word of the given length."""
        return (self.base_ms + word_length * self.per_char_ms) * self.safety_multiplier

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "base_ms": self.base_ms,
            "per_char_ms": self.per_char_ms,
            "safety_multiplier": self.safety_multiplier,
            "word_count": self.word_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThresholdParams":
        """Create ThresholdParams from its dict form."""
        return cls(
            base_ms=float(data["base_ms"]),
            per_char_ms=float(data["per_char_ms"]),
            safety_multiplier=float(data["safety_multiplier"]),
            word_count=int(data.get("word_count", 0)),
        )


@dataclass(frozen=True)
class PlacementResult:
    """One word typed during the placement test."""
    word: str
    time_ms: float
    correct: bool


@dataclass(frozen=True)
class ProgressRecord:
    """Durable aggregate of one learner's progress.

    The engine receives a copy, computes a new one and hands it back to the
    store; it never mutates the record it was given.
    """
    total_words: int = 0
    total_sessions: int = 0
    struggle_set: Dict[str, StruggleWord] = field(default_factory=dict)
    group_mastery: Dict[str, GroupMastery] = field(default_factory=dict)
    current_level: int = BASE_LEVEL
    unclassified_words: int = 0  # words missing from the library at fold time
    threshold_params: Optional[ThresholdParams] = None  # None until calibrated

    @classmethod
    def empty(cls) -> "ProgressRecord":
        """The default record of a learner with no practice."""
        return cls()

    def is_empty(self) -> bool:
        """Check whether the record carries no practice at all."""
        return (
            self.total_sessions == 0
            and self.total_words == 0
            and not self.struggle_set
            and not any(m.total_count for m in self.group_mastery.values())
        )

    def mastery_total(self) -> int:
        """Sum of total_count across all phonics groups."""
        return sum(m.total_count for m in self.group_mastery.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict for client storage."""
        return {
            "total_words": self.total_words,
            "total_sessions": self.total_sessions,
            "current_level": self.current_level,
            "unclassified_words": self.unclassified_words,
            "threshold_params": self.threshold_params.to_dict() if self.threshold_params else None,
            "struggle_set": [
                {
                    "word": sw.word,
                    "added_at_ordinal": sw.added_at_ordinal,
                    "consecutive_correct": sw.consecutive_correct,
                }
                for sw in sorted(self.struggle_set.values(), key=lambda sw: sw.word)
            ],
            "group_mastery": {
                group: {"correct_count": m.correct_count, "total_count": m.total_count}
                for group, m in sorted(self.group_mastery.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressRecord":
        """Create a ProgressRecord from its stored dict form."""
        threshold = data.get("threshold_params")
        struggle_set = {}
        for item in data.get("struggle_set", []):
            struggle_set[item["word"]] = StruggleWord(
                word=item["word"],
                added_at_ordinal=int(item.get("added_at_ordinal", 0)),
                consecutive_correct=int(item.get("consecutive_correct", 0)),
            )
        group_mastery = {
            group: GroupMastery(
                phonics_group=group,
                correct_count=int(counts.get("correct_count", 0)),
                total_count=int(counts.get("total_count", 0)),
            )
            for group, counts in data.get("group_mastery", {}).items()
        }
        return cls(
            total_words=int(data.get("total_words", 0)),
            total_sessions=int(data.get("total_sessions", 0)),
            struggle_set=struggle_set,
            group_mastery=group_mastery,
            current_level=int(data.get("current_level", BASE_LEVEL)),
            unclassified_words=int(data.get("unclassified_words", 0)),
            threshold_params=ThresholdParams.from_dict(threshold) if threshold else None,
        )


@dataclass(frozen=True)
class SessionSummary:
    """Immutable summary of one sealed session."""
    session_id: str
    learner_id: str
    words_attempted: int
    words_correct: int
    attempts: int
    accuracy: float
    struggled_words: List[str]
    total_hesitation_ms: int
    average_hesitation_ms: float
    first_ordinal: Optional[int]
    last_ordinal: Optional[int]
    group_breakdown: Dict[str, Tuple[int, int]]  # group -> (correct, total)
    lookup_gaps: List[str]
