import logging
import threading
import time
from typing import Callable

from models import AnimationState, AnimationType, ChangeType

log = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 10.0
STALE_AFTER_MS = 5000


class AnimationTracker:
    """Short-lived animation state per feed item id (event id or group id).

    Deactivation timers and the periodic sweep run on timer threads, so all
    state access goes through one lock. Call ``destroy()`` on teardown.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or (lambda: time.time() * 1000)
        self._lock = threading.Lock()
        self._states: dict[str, AnimationState] = {}
        self._seen: set[str] = set()
        self._timers: set[threading.Timer] = set()
        self._sweeper: threading.Timer | None = None
        self._destroyed = False

    def trigger_animation(self, item_id: str, type: AnimationType, duration: int = 1000) -> AnimationState:
        state = AnimationState(type=type, is_active=True, timestamp=self._clock())
        with self._lock:
            if self._destroyed:
                return state
            self._states[item_id] = state
            timer = threading.Timer(duration / 1000, lambda: self._expire(item_id, state, timer))
            timer.daemon = True
            self._timers.add(timer)
            timer.start()
        return state

    def _expire(self, item_id: str, state: AnimationState, timer: threading.Timer) -> None:
        with self._lock:
            self._timers.discard(timer)
            # a newer trigger for the same id owns the state now
            if self._states.get(item_id) is state:
                state.is_active = False

    def get_animation_state(self, item_id: str) -> AnimationState | None:
        with self._lock:
            return self._states.get(item_id)

    def should_animate(self, item_id: str, change_type: ChangeType) -> AnimationType | None:
        if change_type == "new":
            with self._lock:
                if item_id in self._seen:
                    return None
                self._seen.add(item_id)
            return "enter"
        if change_type == "updated":
            return "update"
        return None

    def process_event_animation(self, item_id: str, change_type: ChangeType) -> AnimationType | None:
        animation = self.should_animate(item_id, change_type)
        if animation:
            self.trigger_animation(item_id, animation)
        return animation

    def pulse_card(self, item_id: str) -> None:
        self.trigger_animation(item_id, "pulse", 600)

    def highlight_change(self, item_id: str) -> None:
        self.trigger_animation(item_id, "highlight", 800)

    def is_animating(self, item_id: str, type: AnimationType | None = None) -> bool:
        state = self.get_animation_state(item_id)
        if state is None or not state.is_active:
            return False
        return type is None or state.type == type

    def get_animation_kind(self, item_id: str) -> AnimationType | None:
        state = self.get_animation_state(item_id)
        if state is None or not state.is_active:
            return None
        return state.type

    def cleanup(self) -> int:
        """Drop inactive states older than ``STALE_AFTER_MS``."""
        now = self._clock()
        with self._lock:
            stale = [
                item_id
                for item_id, state in self._states.items()
                if not state.is_active and now - state.timestamp > STALE_AFTER_MS
            ]
            for item_id in stale:
                del self._states[item_id]
        if stale:
            log.debug("Evicted %d stale animation states", len(stale))
        return len(stale)

    def start(self) -> None:
        with self._lock:
            if self._destroyed or self._sweeper is not None:
                return
            self._schedule_sweep()

    def _schedule_sweep(self) -> None:
        self._sweeper = threading.Timer(CLEANUP_INTERVAL_SECONDS, self._sweep)
        self._sweeper.daemon = True
        self._sweeper.start()

    def _sweep(self) -> None:
        self.cleanup()
        with self._lock:
            if not self._destroyed:
                self._schedule_sweep()

    def destroy(self) -> None:
        with self._lock:
            self._destroyed = True
            if self._sweeper is not None:
                self._sweeper.cancel()
                self._sweeper = None
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
            self._states.clear()
