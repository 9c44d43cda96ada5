"""Tests for session recorder."""
from dataclasses import replace

import pytest
from faker import Faker

from spellwise.exceptions import MalformedSessionError
from spellwise.models.progress_models import Attempt, ProgressRecord, StruggleWord, ThresholdParams
from spellwise.services.session_recorder import SessionRecorder
from spellwise.tests.factories import make_session

fake = Faker()


def assert_sum_invariant(record: ProgressRecord) -> None:
    """total_words matches the mastery totals plus unclassified words."""
    assert record.total_words == record.mastery_total() + record.unclassified_words


def test_fold_updates_counts(recorder: SessionRecorder) -> None:
    """A fold adds one session, distinct words and one mastery sample per word."""
    session = make_session("s1", "learner", [
        ("cat", True), ("map", False), ("map", True), ("flag", True),
    ])

    record = recorder.fold_session(session, ProgressRecord.empty())

    assert record.total_sessions == 1
    assert record.total_words == 3
    assert record.group_mastery["short_a"].correct_count == 1
    assert record.group_mastery["short_a"].total_count == 2
    assert record.group_mastery["blends"].correct_count == 1
    assert set(record.struggle_set) == {"map"}
    assert_sum_invariant(record)


def test_fold_does_not_mutate_prior(recorder: SessionRecorder) -> None:
    """The prior record is left exactly as it was."""
    prior = recorder.fold_session(make_session("s1", "learner", [("cat", False)]), ProgressRecord.empty())
    snapshot = ProgressRecord.from_dict(prior.to_dict())

    recorder.fold_session(make_session("s2", "learner", [("cat", True), ("pin", False)], 10), prior)

    assert prior == snapshot


def test_fold_recomputes_level(recorder: SessionRecorder) -> None:
    """The level is derived from the folded mastery, not carried over."""
    prior = replace(ProgressRecord.empty(), current_level=99)
    misses = [(word, False) for word in ["flag", "clap", "frog"]]

    record = prior
    for index in range(2):
        record = recorder.fold_session(make_session(f"s{index}", "learner", misses, index * 10 + 1), record)

    assert record.group_mastery["blends"].total_count == 6
    assert record.current_level == 1


def test_struggle_scenario_through_fold(recorder: SessionRecorder) -> None:
    """A miss followed by three correct attempts leaves the word retired."""
    session = make_session("s1", "learner", [("cat", False), ("cat", True), ("cat", True), ("cat", True)])

    record = recorder.fold_session(session, ProgressRecord.empty())

    assert "cat" not in record.struggle_set
    assert record.total_words == 1
    assert record.group_mastery["short_a"].correct_count == 0


def test_lookup_gap_counted_but_not_in_mastery(recorder: SessionRecorder) -> None:
    """Words missing from the library count toward total_words only."""
    unknown = fake.unique.pystr(min_chars=12, max_chars=12)
    session = make_session("s1", "learner", [("cat", True), (unknown, False)])

    record = recorder.fold_session(session, ProgressRecord.empty())

    assert record.total_words == 2
    assert record.unclassified_words == 1
    assert record.mastery_total() == 1
    assert unknown in record.struggle_set
    assert_sum_invariant(record)


def test_invariant_over_many_folds(recorder: SessionRecorder) -> None:
    """The word sum invariant holds after every fold."""
    words = ["cat", "map", "bag", "pin", "sit", "flag", "clap", "frog", "ship", "chop"]
    record = ProgressRecord.empty()
    for index in range(20):
        outcomes = [(fake.random_element(words), fake.pybool()) for _ in range(8)]
        record = recorder.fold_session(make_session(f"s{index}", "learner", outcomes, index * 100), record)
        assert_sum_invariant(record)
    assert record.total_sessions == 20


def test_empty_session(recorder: SessionRecorder) -> None:
    """A sealed session without attempts still counts as a session."""
    record = recorder.fold_session(make_session("s1", "learner", []), ProgressRecord.empty())

    assert record.total_sessions == 1
    assert record.total_words == 0


def test_unsealed_session_rejected(recorder: SessionRecorder) -> None:
    """Only sealed sessions are folded."""
    session = replace(make_session("s1", "learner", [("cat", True)]), sealed=False)

    with pytest.raises(MalformedSessionError):
        recorder.fold_session(session, ProgressRecord.empty())


def test_out_of_order_session_rejected(recorder: SessionRecorder) -> None:
    """Out of order attempts reject the whole session."""
    session = replace(
        make_session("s1", "learner", []),
        attempts=(Attempt("cat", True, 0, 5), Attempt("map", False, 0, 3)),
    )

    with pytest.raises(MalformedSessionError):
        recorder.fold_session(session, ProgressRecord.empty())


def test_attempt_before_start_rejected(recorder: SessionRecorder) -> None:
    """Attempts may not precede the session start."""
    session = make_session("s1", "learner", [("cat", True)], start_ordinal=10)
    session = replace(session, attempts=(Attempt("cat", True, 0, 9),))

    with pytest.raises(MalformedSessionError):
        recorder.validate(session)


def test_active_session_records_and_seals(recorder: SessionRecorder) -> None:
    """An active session assigns ordinals and becomes immutable when sealed."""
    active = recorder.start_session("s1", "learner", start_ordinal=100, level_at_start=2)
    active.record_attempt("cat", False, hesitation_ms=300)
    active.record_attempt("cat", True)
    session = active.seal()

    assert session.sealed is True
    assert [a.timestamp_ordinal for a in session.attempts] == [100, 101]
    assert session.level_at_start == 2

    with pytest.raises(MalformedSessionError):
        active.record_attempt("map", True)
    with pytest.raises(MalformedSessionError):
        active.seal()


def test_active_session_rejects_out_of_order_attempt(recorder: SessionRecorder) -> None:
    """Explicit ordinals must increase."""
    active = recorder.start_session("s1", "learner", start_ordinal=1)
    active.record_attempt("cat", True, timestamp_ordinal=5)

    with pytest.raises(MalformedSessionError):
        active.record_attempt("map", True, timestamp_ordinal=5)


def test_abandoned_session_is_foldable(recorder: SessionRecorder) -> None:
    """Abandoning seals the attempts made so far."""
    active = recorder.start_session("s1", "learner", start_ordinal=1)
    active.record_attempt("pin", True)
    session = active.abandon()

    record = recorder.fold_session(session, ProgressRecord.empty())
    assert record.total_words == 1


def test_summarize(recorder: SessionRecorder) -> None:
    """The summary reports first-try accuracy, struggles and hesitation."""
    session = make_session("s1", "learner", [
        ("cat", True, 200), ("map", False, 400), ("map", True, 0), ("ship", True, 3000),
    ])

    summary = recorder.summarize(session)

    assert summary.words_attempted == 3
    assert summary.words_correct == 2
    assert summary.attempts == 4
    assert summary.accuracy == pytest.approx(2 / 3)
    assert summary.struggled_words == ["map", "ship"]
    assert summary.total_hesitation_ms == 3600
    assert summary.average_hesitation_ms == 900
    assert summary.first_ordinal == 1
    assert summary.last_ordinal == 4
    assert summary.group_breakdown == {"short_a": (1, 2), "digraphs": (1, 1)}
    assert summary.lookup_gaps == []


def test_word_case_does_not_split_words(recorder: SessionRecorder) -> None:
    """Spellings differing only in case are one word."""
    session = make_session("s1", "learner", [("Cat", False), ("cat", True)])

    record = recorder.fold_session(session, ProgressRecord.empty())

    assert record.total_words == 1
    assert record.group_mastery["short_a"].correct_count == 0
    assert record.group_mastery["short_a"].total_count == 1
    assert record.struggle_set == {"cat": StruggleWord("cat", added_at_ordinal=1, consecutive_correct=1)}
    assert recorder.summarize(session).struggled_words == ["cat"]
    assert_sum_invariant(record)


def test_fold_uses_learner_threshold(recorder: SessionRecorder) -> None:
    """A calibrated learner is judged against their own hesitation threshold."""
    session = make_session("s1", "learner", [("cat", True, 800)])
    fast_typist = ProgressRecord(threshold_params=ThresholdParams(400.0, 100.0, 1.0, 10))

    assert recorder.fold_session(session, ProgressRecord.empty()).struggle_set == {}
    assert "cat" in recorder.fold_session(session, fast_typist).struggle_set


def test_fold_adjusts_calibrated_threshold(recorder: SessionRecorder) -> None:
    """Timed correct attempts refine a calibrated threshold; uncalibrated stays default."""
    session = make_session("s1", "learner", [("cat", True, 600), ("map", True, 600), ("pin", True, 600)])
    params = ThresholdParams(400.0, 300.0, 1.3, 4)

    calibrated = recorder.fold_session(session, ProgressRecord(threshold_params=params))
    uncalibrated = recorder.fold_session(session, ProgressRecord.empty())

    assert calibrated.threshold_params.word_count == 7
    assert calibrated.threshold_params.per_char_ms == pytest.approx(300 * 0.95 + 200 * 0.05)
    assert uncalibrated.threshold_params is None
