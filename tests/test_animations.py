import time

import pytest

from animations import AnimationTracker


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    tracker = AnimationTracker(clock=clock)
    yield tracker
    tracker.destroy()


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestShouldAnimate:
    def test_enter_only_on_first_sight(self, tracker):
        assert tracker.should_animate("evt-1", "new") == "enter"
        assert tracker.should_animate("evt-1", "new") is None

    def test_updated_always_maps_to_update(self, tracker):
        assert tracker.should_animate("group-1", "updated") == "update"
        assert tracker.should_animate("group-1", "updated") == "update"

    def test_unchanged_never_animates(self, tracker):
        assert tracker.should_animate("group-1", "unchanged") is None


class TestTriggerAnimation:
    def test_state_is_active_then_cleared(self, tracker):
        tracker.trigger_animation("evt-1", "enter", duration=20)
        assert tracker.is_animating("evt-1")
        assert tracker.is_animating("evt-1", "enter")
        assert not tracker.is_animating("evt-1", "pulse")
        assert tracker.get_animation_kind("evt-1") == "enter"

        assert wait_until(lambda: not tracker.is_animating("evt-1"))
        assert tracker.get_animation_state("evt-1").type == "enter"
        assert tracker.get_animation_kind("evt-1") is None

    def test_newer_trigger_is_not_cleared_by_older_timer(self, tracker, clock):
        tracker.trigger_animation("evt-1", "enter", duration=20)
        clock.now += 1
        tracker.trigger_animation("evt-1", "highlight", duration=60_000)

        time.sleep(0.1)
        assert tracker.is_animating("evt-1", "highlight")

    def test_process_event_animation_triggers_enter(self, tracker):
        assert tracker.process_event_animation("evt-2", "new") == "enter"
        assert tracker.get_animation_kind("evt-2") == "enter"
        assert tracker.process_event_animation("evt-2", "unchanged") is None

    def test_pulse_and_highlight(self, tracker):
        tracker.pulse_card("a")
        tracker.highlight_change("b")
        assert tracker.get_animation_kind("a") == "pulse"
        assert tracker.get_animation_kind("b") == "highlight"

    def test_unknown_id(self, tracker):
        assert tracker.get_animation_state("missing") is None
        assert not tracker.is_animating("missing")


class TestLifecycle:
    def test_cleanup_evicts_only_stale_inactive_states(self, tracker, clock):
        tracker.trigger_animation("old", "enter", duration=10)
        tracker.trigger_animation("busy", "update", duration=60_000)
        assert wait_until(lambda: not tracker.is_animating("old"))

        clock.now += 4000
        assert tracker.cleanup() == 0

        clock.now += 2000
        assert tracker.cleanup() == 1
        assert tracker.get_animation_state("old") is None
        assert tracker.get_animation_state("busy") is not None

    def test_destroy_cancels_timers_and_clears_state(self, clock):
        tracker = AnimationTracker(clock=clock)
        tracker.start()
        tracker.trigger_animation("evt-1", "enter", duration=60_000)

        tracker.destroy()

        assert tracker.get_animation_state("evt-1") is None
        tracker.trigger_animation("evt-2", "enter")
        assert tracker.get_animation_state("evt-2") is None
