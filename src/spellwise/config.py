"""Configuration settings for the mastery engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent
PACKAGE_DIR = Path(__file__).parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
LOGS_DIR = DATA_DIR / "logs"
WORD_LIBRARY_FILE = Path(os.getenv("WORD_LIBRARY_FILE", str(PACKAGE_DIR / "data" / "words.json")))

# Level reported when not even the lowest library level is cleared
BASE_LEVEL = 0


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        LOGS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    logs_dir: Path = LOGS_DIR
    word_library_file: Path = WORD_LIBRARY_FILE


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///spellwise.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    max_bytes: int = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))


@dataclass
class EngineSettings:
    """Struggle, retirement and mastery thresholds."""
    hesitation_threshold_ms: int = int(os.getenv("HESITATION_THRESHOLD_MS", "1500"))
    hesitation_per_char_ms: int = int(os.getenv("HESITATION_PER_CHAR_MS", "0"))
    retirement_threshold: int = int(os.getenv("RETIREMENT_THRESHOLD", "3"))
    learning_threshold: float = float(os.getenv("LEARNING_THRESHOLD", "0.7"))
    mastery_threshold: float = float(os.getenv("MASTERY_THRESHOLD", "0.8"))
    min_sample_size: int = int(os.getenv("MIN_SAMPLE_SIZE", "5"))
    # Per-learner threshold calibration
    hesitation_safety_multiplier: float = float(os.getenv("HESITATION_SAFETY_MULTIPLIER", "1.3"))
    threshold_adjustment_rate: float = float(os.getenv("THRESHOLD_ADJUSTMENT_RATE", "0.05"))
    min_calibration_words: int = int(os.getenv("MIN_CALIBRATION_WORDS", "3"))


@dataclass
class PlannerSettings:
    """Word selection settings."""
    session_size: int = int(os.getenv("SESSION_SIZE", "20"))
    struggle_ratio: float = float(os.getenv("STRUGGLE_RATIO", "0.3"))
    new_words_ratio: float = float(os.getenv("NEW_WORDS_RATIO", "0.5"))
    leading_confidence_words: int = int(os.getenv("LEADING_CONFIDENCE_WORDS", "2"))


@dataclass
class StoreSettings:
    """Progress store settings."""
    max_retries: int = int(os.getenv("STORE_MAX_RETRIES", "3"))


@dataclass
class MonitoringSettings:
    """Metrics exporter settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_engine_settings() -> EngineSettings:
    """Get engine settings."""
    return EngineSettings()


def get_planner_settings() -> PlannerSettings:
    """Get planner settings."""
    return PlannerSettings()


def get_store_settings() -> StoreSettings:
    """Get store settings."""
    return StoreSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    engine: EngineSettings = field(default_factory=get_engine_settings)
    planner: PlannerSettings = field(default_factory=get_planner_settings)
    store: StoreSettings = field(default_factory=get_store_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        engine = self.engine
        if engine.hesitation_threshold_ms < 0 or engine.hesitation_per_char_ms < 0:
            raise ValueError("HESITATION_THRESHOLD_MS and HESITATION_PER_CHAR_MS must not be negative")

        if engine.retirement_threshold < 1:
            raise ValueError("RETIREMENT_THRESHOLD must be positive")

        if not 0 <= engine.learning_threshold <= engine.mastery_threshold <= 1:
            raise ValueError("Thresholds must satisfy 0 <= LEARNING_THRESHOLD <= MASTERY_THRESHOLD <= 1")

        if engine.min_sample_size < 1:
            raise ValueError("MIN_SAMPLE_SIZE must be positive")

        if engine.hesitation_safety_multiplier <= 0:
            raise ValueError("HESITATION_SAFETY_MULTIPLIER must be positive")

        if not 0 < engine.threshold_adjustment_rate <= 1:
            raise ValueError("THRESHOLD_ADJUSTMENT_RATE must be in (0, 1]")

        if engine.min_calibration_words < 1:
            raise ValueError("MIN_CALIBRATION_WORDS must be positive")

        if self.planner.session_size < 1:
            raise ValueError("SESSION_SIZE must be positive")

        if self.planner.struggle_ratio < 0 or self.planner.new_words_ratio < 0 or \
           self.planner.struggle_ratio + self.planner.new_words_ratio > 1:
            raise ValueError("STRUGGLE_RATIO and NEW_WORDS_RATIO must be non-negative and sum to at most 1")

        if self.store.max_retries < 1:
            raise ValueError("STORE_MAX_RETRIES must be positive")


# Create global settings instance
settings = Settings()
settings.validate()
