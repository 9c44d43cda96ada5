"""Level calculator: mastery tiers and current level from group accuracy."""
import logging
from typing import Dict, Mapping, Optional

from spellwise.config import BASE_LEVEL, EngineSettings, settings as global_settings
from spellwise.models.progress_models import GroupMastery, LevelResult, MasteryTier
from spellwise.services.word_library import WordLibrary

logger = logging.getLogger(__name__)


class LevelCalculator:
    """Derives mastery tiers and the current level from GroupMastery.

    The current level is the highest library level L such that no phonics
    group assigned to a level <= L is blocking. A group blocks when it has
    at least ``min_sample_size`` samples and is not mastered; groups never
    attempted, or attempted too little, do not block. The result depends on
    the mastery counts alone, so levels fall again when accuracy drops.
    """

    def __init__(self, library: WordLibrary, settings: Optional[EngineSettings] = None):
        self.library = library
        self.settings = settings or global_settings.engine

    def tier(self, mastery: GroupMastery) -> MasteryTier:
        """Get the accuracy tier of a group."""
        if mastery.total_count == 0:
            return MasteryTier.NOT_STARTED
        accuracy = mastery.accuracy
        if accuracy < self.settings.learning_threshold:
            return MasteryTier.NOT_MASTERED
        if accuracy < self.settings.mastery_threshold:
            return MasteryTier.IN_PROGRESS
        return MasteryTier.MASTERED

    def blocks(self, mastery: Optional[GroupMastery]) -> bool:
        """Check whether a group keeps the learner from advancing past its level."""
        if mastery is None or mastery.total_count < self.settings.min_sample_size:
            return False
        return self.tier(mastery) is not MasteryTier.MASTERED

    def current_level(self, group_mastery: Mapping[str, GroupMastery]) -> int:
        """Compute the learner's current level."""
        level = BASE_LEVEL
        for candidate in self.library.levels():
            blocked = [
                group
                for group in self.library.groups_at_level(candidate)
                if self.blocks(group_mastery.get(group))
            ]
            if blocked:
                logger.debug(f"Level {candidate} blocked by {sorted(blocked)}")
                break
            level = candidate
        return level

    def tiers(self, group_mastery: Mapping[str, GroupMastery]) -> Dict[str, MasteryTier]:
        """Get the tier of every library group and every group with counts."""
        result = {group: MasteryTier.NOT_STARTED for group in self.library.groups()}
        for group, mastery in group_mastery.items():
            result[group] = self.tier(mastery)
        return result

    def calculate(self, group_mastery: Mapping[str, GroupMastery]) -> LevelResult:
        """Compute the current level together with per-group tiers."""
        return LevelResult(
            current_level=self.current_level(group_mastery),
            tiers=self.tiers(group_mastery),
        )
