"""Test configuration."""
import os
from pathlib import Path
from typing import Generator

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy.orm import Session

from spellwise.config import EngineSettings, PlannerSettings, Settings
from spellwise.models.base import Base, SessionLocal, engine, init_db
from spellwise.models.progress_models import WordEntry
from spellwise.services.level_calculator import LevelCalculator
from spellwise.services.session_recorder import SessionRecorder
from spellwise.services.struggle_tracker import StruggleTracker
from spellwise.services.word_library import WordLibrary


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Engine thresholds independent of the environment."""
    return EngineSettings(
        hesitation_threshold_ms=1500,
        hesitation_per_char_ms=0,
        retirement_threshold=3,
        learning_threshold=0.7,
        mastery_threshold=0.8,
        min_sample_size=5,
        hesitation_safety_multiplier=1.3,
        threshold_adjustment_rate=0.05,
        min_calibration_words=3,
    )


@pytest.fixture
def app_settings(engine_settings: EngineSettings) -> Settings:
    """Full settings with test engine and planner values."""
    return Settings(
        engine=engine_settings,
        planner=PlannerSettings(
            session_size=10,
            struggle_ratio=0.3,
            new_words_ratio=0.5,
            leading_confidence_words=2,
        ),
    )


@pytest.fixture
def library() -> WordLibrary:
    """A small library: short_a and short_i at level 1, blends at 2, digraphs at 3."""
    return WordLibrary.from_entries([
        WordEntry("cat", "short_a", 1),
        WordEntry("map", "short_a", 1),
        WordEntry("bag", "short_a", 1),
        WordEntry("pin", "short_i", 1),
        WordEntry("sit", "short_i", 1),
        WordEntry("flag", "blends", 2),
        WordEntry("clap", "blends", 2),
        WordEntry("frog", "blends", 2),
        WordEntry("ship", "digraphs", 3),
        WordEntry("chop", "digraphs", 3),
    ])


@pytest.fixture
def tracker(engine_settings: EngineSettings) -> StruggleTracker:
    """Create a struggle tracker."""
    return StruggleTracker(engine_settings)


@pytest.fixture
def calculator(library: WordLibrary, engine_settings: EngineSettings) -> LevelCalculator:
    """Create a level calculator."""
    return LevelCalculator(library, engine_settings)


@pytest.fixture
def recorder(library: WordLibrary, tracker: StruggleTracker, calculator: LevelCalculator) -> SessionRecorder:
    """Create a session recorder."""
    return SessionRecorder(library, tracker, calculator)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
