"""Application wiring: builds the engine components from settings."""
import logging
import random
from typing import Optional

from sqlalchemy.orm import Session

from spellwise.config import Settings, settings as global_settings
from spellwise.models.progress_models import PracticeSession, ProgressRecord
from spellwise.services.level_calculator import LevelCalculator
from spellwise.services.merge_service import MergeService
from spellwise.services.progress_service import ProgressService
from spellwise.services.session_planner import SessionPlanner
from spellwise.services.session_recorder import SessionRecorder
from spellwise.services.struggle_tracker import StruggleTracker
from spellwise.services.word_library import WordLibrary, WordLibraryService

logger = logging.getLogger(__name__)


class MasteryEngine:
    """The engine components sharing one word library and one set of thresholds."""

    def __init__(self, library: WordLibrary, settings: Optional[Settings] = None,
                 rng: Optional[random.Random] = None):
        """Initialize the components."""
        self.settings = settings or global_settings
        self.library = library
        self.tracker = StruggleTracker(self.settings.engine)
        self.calculator = LevelCalculator(library, self.settings.engine)
        self.recorder = SessionRecorder(library, self.tracker, self.calculator)
        self.merger = MergeService(self.calculator)
        self.planner = SessionPlanner(library, self.calculator, self.settings.planner, rng)

    @classmethod
    def from_db(cls, db: Session, settings: Optional[Settings] = None) -> "MasteryEngine":
        """Build the engine from the stored catalog, falling back to the packaged file."""
        settings = settings or global_settings
        library = WordLibraryService(db).load()
        if not len(library):
            logger.info(f"Word library table is empty, using {settings.paths.word_library_file}")
            library = WordLibrary.from_json(settings.paths.word_library_file)
        return cls(library, settings)

    @classmethod
    def from_json(cls, path=None, settings: Optional[Settings] = None) -> "MasteryEngine":
        """Build the engine from a JSON catalog file."""
        settings = settings or global_settings
        return cls(WordLibrary.from_json(path or settings.paths.word_library_file), settings)

    def fold(self, session: PracticeSession, prior: ProgressRecord) -> ProgressRecord:
        """Fold a sealed session into a record."""
        return self.recorder.fold_session(session, prior)

    def merge(self, local: ProgressRecord, remote: ProgressRecord) -> ProgressRecord:
        """Merge anonymous progress into account progress."""
        return self.merger.merge(local, remote)

    def progress_service(self, db: Session) -> ProgressService:
        """Get a progress store bound to a database session."""
        return ProgressService(db, self.recorder, self.merger, self.settings.store)
