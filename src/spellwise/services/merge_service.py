"""Merge of an anonymous progress record into an authenticated one."""
import logging
from typing import Dict, Optional

from spellwise import monitoring
from spellwise.models.progress_models import GroupMastery, ProgressRecord, StruggleWord
from spellwise.services.level_calculator import LevelCalculator
from spellwise.services.threshold_calculator import choose_params

logger = logging.getLogger(__name__)


def merge_group_mastery(
    left: Dict[str, GroupMastery], right: Dict[str, GroupMastery]
) -> Dict[str, GroupMastery]:
    """Sum correct and total counts per phonics group."""
    merged = dict(left)
    for group, mastery in right.items():
        current = merged.get(group, GroupMastery(phonics_group=group))
        merged[group] = current.add(mastery.correct_count, mastery.total_count)
    return merged


def merge_struggle_sets(
    left: Dict[str, StruggleWord], right: Dict[str, StruggleWord]
) -> Dict[str, StruggleWord]:
    """Union keyed by word. On collision the more recovered counter and the earlier ordinal win."""
    merged = dict(left)
    for word, other in right.items():
        mine = merged.get(word)
        if mine is None:
            merged[word] = other
            continue
        merged[word] = StruggleWord(
            word=word,
            added_at_ordinal=min(mine.added_at_ordinal, other.added_at_ordinal),
            consecutive_correct=max(mine.consecutive_correct, other.consecutive_correct),
        )
    return merged


class MergeService:
    """Reconciles anonymous progress with an account's progress at sign-in."""

    def __init__(self, calculator: LevelCalculator):
        self.calculator = calculator

    def merge(self, local: Optional[ProgressRecord], remote: Optional[ProgressRecord]) -> ProgressRecord:
        """Merge the local (anonymous) record into the remote (account) record.

        Either side may be missing; a missing side counts as the empty record.
        The level is always recomputed from the merged mastery counts.
        Of two threshold calibrations the one based on more timings is kept.
        """
        local = local or ProgressRecord.empty()
        remote = remote or ProgressRecord.empty()

        if local.is_empty():
            logger.info("Local record is empty, nothing to merge")
            monitoring.merges.labels(outcome="noop").inc()
            group_mastery = dict(remote.group_mastery)
            return ProgressRecord(
                total_words=remote.total_words,
                total_sessions=remote.total_sessions,
                struggle_set=dict(remote.struggle_set),
                group_mastery=group_mastery,
                current_level=self.calculator.current_level(group_mastery),
                unclassified_words=remote.unclassified_words,
                threshold_params=choose_params(local.threshold_params, remote.threshold_params),
            )

        group_mastery = merge_group_mastery(remote.group_mastery, local.group_mastery)
        merged = ProgressRecord(
            total_words=local.total_words + remote.total_words,
            total_sessions=local.total_sessions + remote.total_sessions,
            struggle_set=merge_struggle_sets(remote.struggle_set, local.struggle_set),
            group_mastery=group_mastery,
            current_level=self.calculator.current_level(group_mastery),
            unclassified_words=local.unclassified_words + remote.unclassified_words,
            threshold_params=choose_params(local.threshold_params, remote.threshold_params),
        )
        monitoring.merges.labels(outcome="merged").inc()
        logger.info(
            f"Merged {local.total_sessions} anonymous sessions into {remote.total_sessions} account sessions, "
            f"level {merged.current_level}"
        )
        return merged


def merge_records(local: Optional[ProgressRecord], remote: Optional[ProgressRecord],
                  calculator: LevelCalculator) -> ProgressRecord:
    """Merge two progress records with the given level calculator."""
    return MergeService(calculator).merge(local, remote)
