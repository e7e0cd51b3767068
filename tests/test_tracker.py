from signaling.tracker import Outcome, OutcomeTracker


def test_unknown_call(clock):
    tracker = OutcomeTracker(clock=clock)
    assert tracker.get_outcome("nope") is Outcome.UNKNOWN


def test_first_final_outcome_wins(clock):
    tracker = OutcomeTracker(clock=clock)
    assert tracker.record_outcome("c1", Outcome.TIMED_OUT)
    assert not tracker.record_outcome("c1", Outcome.REJECTED)
    assert tracker.get_outcome("c1") is Outcome.TIMED_OUT


def test_answered_can_be_followed_by_final_outcome(clock):
    tracker = OutcomeTracker(clock=clock)
    assert tracker.record_outcome("c1", Outcome.ANSWERED)
    assert not tracker.record_outcome("c1", Outcome.ANSWERED)
    assert tracker.record_outcome("c1", Outcome.ENDED)
    assert not tracker.record_outcome("c1", Outcome.ANSWERED)
    assert tracker.get_outcome("c1") is Outcome.ENDED


def test_outcomes_expire_after_grace(clock):
    tracker = OutcomeTracker(grace=60, clock=clock)
    tracker.record_outcome("c1", Outcome.REJECTED)

    clock.advance(59)
    assert tracker.get_outcome("c1") is Outcome.REJECTED
    assert tracker.sweep() == 0

    clock.advance(1)
    assert tracker.get_outcome("c1") is Outcome.UNKNOWN
    assert tracker.sweep() == 1
    assert len(tracker) == 0
