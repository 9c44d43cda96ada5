"""Per-learner hesitation thresholds.

A learner starts on the configured fixed threshold. The placement test
calibrates a personal one from how long correct words took per character,
and each folded session nudges it toward the session's timings with an
exponential moving average.
"""
import logging
import math
from typing import Iterable, List, Optional, Sequence, Tuple

from spellwise.config import EngineSettings, settings as global_settings
from spellwise.models.progress_models import Attempt, PlacementResult, ThresholdParams

logger = logging.getLogger(__name__)

# Bounds on milliseconds per character: roughly 100 WPM down to 6 WPM
MIN_PER_CHAR_MS = 100.0
MAX_PER_CHAR_MS = 2000.0
MIN_BASE_MS = 400.0
MAX_BASE_MS = 1000.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile, 0.0 for no values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.ceil(p / 100 * len(ordered)) - 1
    return ordered[max(0, index)]


def _per_char_timings(timings: Iterable[Tuple[int, float]]) -> List[float]:
    """Milliseconds per character of the usable (word_length, ms) pairs."""
    return [
        ms / length
        for length, ms in timings
        if length > 0 and ms > 0 and math.isfinite(ms)
    ]


def _base_for(per_char_ms: float) -> float:
    # Faster typists need less reading time
    return _clamp(per_char_ms * 0.5, MIN_BASE_MS, MAX_BASE_MS)


def calibrate_from_placement(results: Iterable[PlacementResult],
                             settings: Optional[EngineSettings] = None) -> Optional[ThresholdParams]:
    """Derive threshold parameters from placement test results.

    Only correct words count. Returns None when there are fewer usable
    timings than ``min_calibration_words``.
    """
    settings = settings or global_settings.engine
    per_char = _per_char_timings(
        (len(r.word.strip()), r.time_ms) for r in results if r.correct
    )
    if len(per_char) < settings.min_calibration_words:
        logger.info(f"Only {len(per_char)} usable placement timings, threshold not calibrated")
        return None

    per_char_ms = _clamp(percentile(per_char, 75), MIN_PER_CHAR_MS, MAX_PER_CHAR_MS)
    params = ThresholdParams(
        base_ms=_base_for(per_char_ms),
        per_char_ms=per_char_ms,
        safety_multiplier=settings.hesitation_safety_multiplier,
        word_count=len(per_char),
    )
    logger.info(f"Calibrated threshold from {len(per_char)} words: {params}")
    return params


def adjust_from_session(current: ThresholdParams, attempts: Iterable[Attempt],
                        settings: Optional[EngineSettings] = None) -> ThresholdParams:
    """Blend a session's correct-attempt timings into calibrated parameters.

    Returns ``current`` unchanged when the session has too few usable timings.
    """
    settings = settings or global_settings.engine
    per_char = _per_char_timings(
        (len(a.word.strip()), a.hesitation_ms) for a in attempts if a.correct
    )
    if len(per_char) < settings.min_calibration_words:
        return current

    session_per_char = _clamp(percentile(per_char, 75), MIN_PER_CHAR_MS, MAX_PER_CHAR_MS)
    rate = settings.threshold_adjustment_rate
    per_char_ms = current.per_char_ms * (1 - rate) + session_per_char * rate
    base_ms = current.base_ms * (1 - rate) + _base_for(session_per_char) * rate
    return ThresholdParams(
        base_ms=round(base_ms, 3),
        per_char_ms=round(_clamp(per_char_ms, MIN_PER_CHAR_MS, MAX_PER_CHAR_MS), 3),
        safety_multiplier=current.safety_multiplier,
        word_count=current.word_count + len(per_char),
    )


def choose_params(local: Optional[ThresholdParams],
                  remote: Optional[ThresholdParams]) -> Optional[ThresholdParams]:
    """Pick the calibration to keep when two records merge: the better-sampled one."""
    if remote is None:
        return local
    if local is None:
        return remote
    return local if local.word_count > remote.word_count else remote
