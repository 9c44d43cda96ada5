"""Progress store: durable progress records with compare-and-set writes."""
import logging
import time
from dataclasses import replace
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spellwise import monitoring
from spellwise.config import StoreSettings, settings as global_settings
from spellwise.exceptions import (
    DuplicateSessionError,
    LearnerNotFoundError,
    MalformedSessionError,
    StoreConflictError,
)
from spellwise.models.models import (
    FoldedSession,
    GroupMasteryRow,
    IdentityMerge,
    Learner,
    ProgressRow,
    StruggleWordRow,
)
from spellwise.models.progress_models import (
    GroupMastery,
    PlacementResult,
    PracticeSession,
    ProgressRecord,
    StruggleWord,
    ThresholdParams,
)
from spellwise.services.merge_service import MergeService
from spellwise.services.session_recorder import SessionRecorder
from spellwise.services.threshold_calculator import calibrate_from_placement

logger = logging.getLogger(__name__)


def _threshold_from_row(row: ProgressRow) -> Optional[ThresholdParams]:
    if row.threshold_base_ms is None:
        return None
    return ThresholdParams(
        base_ms=row.threshold_base_ms,
        per_char_ms=row.threshold_per_char_ms,
        safety_multiplier=row.threshold_safety_multiplier,
        word_count=row.threshold_word_count or 0,
    )


def _threshold_columns(params: Optional[ThresholdParams]) -> Dict[str, Any]:
    if params is None:
        return {
            "threshold_base_ms": None,
            "threshold_per_char_ms": None,
            "threshold_safety_multiplier": None,
            "threshold_word_count": None,
        }
    return {
        "threshold_base_ms": params.base_ms,
        "threshold_per_char_ms": params.per_char_ms,
        "threshold_safety_multiplier": params.safety_multiplier,
        "threshold_word_count": params.word_count,
    }


class ProgressService:
    """Service for reading and writing learners' progress records.

    Writes are serialized per learner by a version column: a write names
    the version it read and fails with StoreConflictError if another writer
    got there first. Folds and merges re-run the pure engine functions on
    fresh input when that happens.
    """

    def __init__(self, db: Session, recorder: SessionRecorder,
                 merger: Optional[MergeService] = None, settings: Optional[StoreSettings] = None):
        """Initialize the service with a database session."""
        self.db = db
        self.recorder = recorder
        self.merger = merger or MergeService(recorder.calculator)
        self.settings = settings or global_settings.store

    def get_learner(self, identity: str) -> Optional[Learner]:
        """Get a learner by identity."""
        return self.db.query(Learner).filter(Learner.identity == identity).first()

    def _require_learner(self, identity: str) -> Learner:
        learner = self.get_learner(identity)
        if not learner:
            raise LearnerNotFoundError(identity)
        return learner

    def get_or_create_learner(self, identity: str, is_anonymous: bool = False) -> Learner:
        """Get existing learner or create one with an empty progress record."""
        learner = self.get_learner(identity)
        if learner:
            return learner

        learner = Learner(identity=identity, is_anonymous=is_anonymous)
        learner.progress = ProgressRow(
            version=0,
            total_words=0,
            total_sessions=0,
            unclassified_words=0,
            current_level=self.recorder.calculator.current_level({}),
        )
        self.db.add(learner)
        self.db.commit()
        self.db.refresh(learner)
        logger.info(f"Created {'anonymous' if is_anonymous else 'account'} learner {identity}")
        return learner

    def load_record(self, identity: str) -> Tuple[ProgressRecord, int]:
        """Get a learner's progress record and the version it was read at."""
        learner = self._require_learner(identity)
        row = (
            self.db.query(ProgressRow)
            .populate_existing()
            .filter(ProgressRow.learner_id == learner.id)
            .one()
        )
        mastery_rows = self.db.query(GroupMasteryRow).filter(GroupMasteryRow.progress_id == row.id).all()
        struggle_rows = self.db.query(StruggleWordRow).filter(StruggleWordRow.progress_id == row.id).all()

        record = ProgressRecord(
            total_words=row.total_words,
            total_sessions=row.total_sessions,
            struggle_set={
                r.word: StruggleWord(
                    word=r.word,
                    added_at_ordinal=r.added_at_ordinal,
                    consecutive_correct=r.consecutive_correct,
                )
                for r in struggle_rows
            },
            group_mastery={
                r.phonics_group: GroupMastery(
                    phonics_group=r.phonics_group,
                    correct_count=r.correct_count,
                    total_count=r.total_count,
                )
                for r in mastery_rows
            },
            current_level=row.current_level,
            unclassified_words=row.unclassified_words,
            threshold_params=_threshold_from_row(row),
        )
        return record, row.version

    def _compare_and_set(self, learner: Learner, record: ProgressRecord, expected_version: int) -> int:
        """Write the scalar row if it is still at expected_version, then replace child rows."""
        row = self.db.query(ProgressRow).filter(ProgressRow.learner_id == learner.id).one()
        result = self.db.execute(
            update(ProgressRow)
            .where(ProgressRow.id == row.id, ProgressRow.version == expected_version)
            .values(
                version=expected_version + 1,
                total_words=record.total_words,
                total_sessions=record.total_sessions,
                unclassified_words=record.unclassified_words,
                current_level=record.current_level,
                **_threshold_columns(record.threshold_params),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            monitoring.store_conflicts.inc()
            raise StoreConflictError(learner.identity, expected_version)

        self.db.query(GroupMasteryRow).filter(GroupMasteryRow.progress_id == row.id).delete(
            synchronize_session=False
        )
        self.db.query(StruggleWordRow).filter(StruggleWordRow.progress_id == row.id).delete(
            synchronize_session=False
        )
        self.db.add_all(
            GroupMasteryRow(
                progress_id=row.id,
                phonics_group=m.phonics_group,
                correct_count=m.correct_count,
                total_count=m.total_count,
            )
            for m in record.group_mastery.values()
        )
        self.db.add_all(
            StruggleWordRow(
                progress_id=row.id,
                word=sw.word,
                added_at_ordinal=sw.added_at_ordinal,
                consecutive_correct=sw.consecutive_correct,
            )
            for sw in record.struggle_set.values()
        )
        return expected_version + 1

    def _discard_anonymous(self, learner: Learner, anonymous_identity: str,
                           expected_version: Optional[int]) -> None:
        """Hand the anonymous learner's folded sessions to ``learner`` and delete it.

        The anonymous record must still be at ``expected_version`` (None: it
        did not exist), so a session folded into it after it was read fails
        the merge instead of being dropped.
        """
        anonymous = self.get_learner(anonymous_identity)
        if anonymous is None:
            if expected_version is not None:
                self.db.rollback()
                monitoring.store_conflicts.inc()
                raise StoreConflictError(anonymous_identity, expected_version)
            return
        if anonymous.id == learner.id:
            return

        result = self.db.execute(
            update(ProgressRow)
            .where(ProgressRow.learner_id == anonymous.id, ProgressRow.version == expected_version)
            .values(version=ProgressRow.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            monitoring.store_conflicts.inc()
            raise StoreConflictError(anonymous_identity, expected_version)

        for folded in list(anonymous.folded_sessions):
            folded.learner = learner
        self.db.delete(anonymous)

    def save_record(self, identity: str, record: ProgressRecord, expected_version: int,
                    folded_session_id: Optional[str] = None, merged_from: Optional[str] = None,
                    merged_from_version: Optional[int] = None) -> int:
        """Persist a record computed from the given version. Returns the new version.

        With ``folded_session_id`` the session id is recorded in the same
        transaction. With ``merged_from`` the anonymous identity's transition is
        recorded, its folded session ids move to this learner and its own
        record, which must still be at ``merged_from_version``, is discarded.
        """
        learner = self._require_learner(identity)
        version = self._compare_and_set(learner, record, expected_version)

        if folded_session_id is not None:
            self.db.add(FoldedSession(session_id=folded_session_id, learner_id=learner.id))

        if merged_from is not None:
            self._discard_anonymous(learner, merged_from, merged_from_version)
            self.db.add(IdentityMerge(anonymous_identity=merged_from, account_identity=identity))

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if folded_session_id is not None:
                monitoring.sessions_rejected.labels(reason="duplicate").inc()
                raise DuplicateSessionError(folded_session_id)
            raise
        return version

    def is_session_folded(self, session_id: str) -> bool:
        """Check whether a session id has already been folded."""
        return (
            self.db.query(FoldedSession).filter(FoldedSession.session_id == session_id).first()
            is not None
        )

    def is_merged(self, anonymous_identity: str) -> bool:
        """Check whether an anonymous identity has already been merged."""
        return (
            self.db.query(IdentityMerge)
            .filter(IdentityMerge.anonymous_identity == anonymous_identity)
            .first()
            is not None
        )

    def record_session(self, session: PracticeSession, is_anonymous: bool = False) -> ProgressRecord:
        """Fold a sealed session into its learner's stored record, at most once."""
        started = time.perf_counter()
        try:
            self.recorder.validate(session)
        except MalformedSessionError:
            monitoring.sessions_rejected.labels(reason="malformed").inc()
            raise

        self.get_or_create_learner(session.learner_id, is_anonymous=is_anonymous)
        version = None
        for attempt in range(1, self.settings.max_retries + 1):
            if self.is_session_folded(session.id):
                monitoring.sessions_rejected.labels(reason="duplicate").inc()
                raise DuplicateSessionError(session.id)

            prior, version = self.load_record(session.learner_id)
            record = self.recorder.fold_session(session, prior)
            try:
                self.save_record(session.learner_id, record, version, folded_session_id=session.id)
            except StoreConflictError:
                logger.warning(
                    f"Conflict folding session {session.id} for {session.learner_id} "
                    f"(attempt {attempt}/{self.settings.max_retries})"
                )
                continue

            monitoring.sessions_folded.inc()
            monitoring.fold_duration.observe(time.perf_counter() - started)
            return record

        raise StoreConflictError(session.learner_id, version)

    def merge_identities(self, anonymous_identity: str, account_identity: str,
                         local_record: Optional[ProgressRecord] = None) -> ProgressRecord:
        """Merge anonymous progress into an account once per transition.

        ``local_record`` is the record held in client storage; when omitted,
        the anonymous learner's stored record is used. Both records are
        re-read on every attempt, and the anonymous record is discarded only
        if nothing was folded into it meanwhile. A transition that has
        already been merged is left alone and the account record returned.
        """
        self.get_or_create_learner(account_identity, is_anonymous=False)

        version = None
        for attempt in range(1, self.settings.max_retries + 1):
            if self.is_merged(anonymous_identity):
                logger.info(f"{anonymous_identity} was already merged, skipping")
                monitoring.merges.labels(outcome="repeat").inc()
                return self.load_record(account_identity)[0]

            if self.get_learner(anonymous_identity) is not None:
                stored, anonymous_version = self.load_record(anonymous_identity)
            else:
                stored, anonymous_version = ProgressRecord.empty(), None
            local = local_record if local_record is not None else stored

            remote, version = self.load_record(account_identity)
            merged = self.merger.merge(local, remote)
            try:
                self.save_record(
                    account_identity, merged, version,
                    merged_from=anonymous_identity, merged_from_version=anonymous_version,
                )
            except StoreConflictError:
                logger.warning(
                    f"Conflict merging {anonymous_identity} into {account_identity} "
                    f"(attempt {attempt}/{self.settings.max_retries})"
                )
                continue
            logger.info(f"Merged {anonymous_identity} into {account_identity}")
            return merged

        raise StoreConflictError(account_identity, version)

    def calibrate_threshold(self, identity: str, results: Iterable[PlacementResult]) -> ProgressRecord:
        """Store a hesitation threshold calibrated from placement test results.

        With too few usable results the record is returned unchanged.
        """
        results = list(results)
        self.get_or_create_learner(identity)
        params = calibrate_from_placement(results, self.recorder.tracker.settings)

        version = None
        for attempt in range(1, self.settings.max_retries + 1):
            record, version = self.load_record(identity)
            if params is None:
                return record
            calibrated = replace(record, threshold_params=params)
            try:
                self.save_record(identity, calibrated, version)
            except StoreConflictError:
                logger.warning(
                    f"Conflict calibrating {identity} (attempt {attempt}/{self.settings.max_retries})"
                )
                continue
            return calibrated

        raise StoreConflictError(identity, version)

    def delete_learner(self, identity: str) -> bool:
        """Delete a learner and all of their progress."""
        learner = self.get_learner(identity)
        if not learner:
            return False
        self.db.delete(learner)
        self.db.commit()
        logger.info(f"Deleted learner {identity}")
        return True
