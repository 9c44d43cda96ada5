"""Session planner: chooses the words a learner practices next."""
import logging
import math
import random
from typing import List, Optional, Set

from spellwise.config import PlannerSettings, settings as global_settings
from spellwise.models.progress_models import MasteryTier, ProgressRecord, WordEntry
from spellwise.services.level_calculator import LevelCalculator
from spellwise.services.word_library import WordLibrary

logger = logging.getLogger(__name__)


class SessionPlanner:
    """Builds a practice list from three buckets.

    - struggle words from the learner's review set
    - new concept words from the frontier: groups not yet mastered at the
      lowest level that still has one, and the level right after it
    - confidence words from mastered groups
    """

    def __init__(self, library: WordLibrary, calculator: LevelCalculator,
                 settings: Optional[PlannerSettings] = None, rng: Optional[random.Random] = None):
        self.library = library
        self.calculator = calculator
        self.settings = settings or global_settings.planner
        self.rng = rng or random.Random()

    def frontier_groups(self, record: ProgressRecord) -> Set[str]:
        """Get the groups the learner should be introduced to next."""
        tiers = self.calculator.tiers(record.group_mastery)
        levels = self.library.levels()
        for index, level in enumerate(levels):
            open_groups = {
                g for g in self.library.groups_at_level(level) if tiers.get(g) is not MasteryTier.MASTERED
            }
            if open_groups:
                if index + 1 < len(levels):
                    open_groups |= {
                        g for g in self.library.groups_at_level(levels[index + 1])
                        if tiers.get(g) is not MasteryTier.MASTERED
                    }
                return open_groups
        return set()

    def mastered_groups(self, record: ProgressRecord) -> Set[str]:
        """Get the groups the learner has mastered."""
        return {
            group for group, tier in self.calculator.tiers(record.group_mastery).items()
            if tier is MasteryTier.MASTERED
        }

    def _struggle_words(self, record: ProgressRecord, count: int) -> List[WordEntry]:
        ordered = sorted(
            record.struggle_set.values(),
            key=lambda sw: (sw.consecutive_correct, sw.added_at_ordinal, sw.word),
        )
        words = []
        for struggle_word in ordered:
            if len(words) >= count:
                break
            entry = self.library.lookup(struggle_word.word)
            if entry is None:
                logger.warning(f"Struggle word '{struggle_word.word}' is not in the word library, skipping")
                continue
            words.append(entry)
        return words

    def _take(self, pool: List[WordEntry], count: int, chosen: Set[str]) -> List[WordEntry]:
        candidates = [entry for entry in pool if entry.word not in chosen]
        picked = self.rng.sample(candidates, min(count, len(candidates)))
        chosen.update(entry.word for entry in picked)
        return picked

    def plan(self, record: ProgressRecord, size: Optional[int] = None) -> List[WordEntry]:
        """Choose up to ``size`` distinct words for the next session."""
        if size is None:
            size = self.settings.session_size
        if size < 0:
            raise ValueError(f"Session size must not be negative, got {size}")
        struggle_count = math.floor(size * self.settings.struggle_ratio)
        new_count = math.floor(size * self.settings.new_words_ratio)
        confidence_count = size - struggle_count - new_count

        chosen: Set[str] = set()
        struggle = self._struggle_words(record, struggle_count)
        chosen.update(entry.word for entry in struggle)

        frontier_pool = self.library.words_in_groups(self.frontier_groups(record))
        new_words = self._take(frontier_pool, new_count, chosen)

        confidence_pool = self.library.words_in_groups(self.mastered_groups(record))
        confidence = self._take(confidence_pool, confidence_count, chosen)

        # Fill shortfalls from the frontier, then from anywhere in the library
        missing = size - len(struggle) - len(new_words) - len(confidence)
        if missing > 0:
            new_words += self._take(frontier_pool, missing, chosen)
            missing = size - len(struggle) - len(new_words) - len(confidence)
        if missing > 0:
            new_words += self._take(self.library.all_words(), missing, chosen)

        leading = confidence[: self.settings.leading_confidence_words]
        rest = confidence[self.settings.leading_confidence_words:] + new_words + struggle
        self.rng.shuffle(rest)
        logger.info(
            f"Planned {len(leading) + len(rest)} words: {len(struggle)} struggle, "
            f"{len(new_words)} new, {len(confidence)} confidence"
        )
        return leading + rest
