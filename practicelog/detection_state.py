"""
Shared detection state between the practice timer and its consumers (web UI, CLI).

The timer and the UI refresh loop write; everything else reads. Each write
replaces the whole record, so readers always see a consistent snapshot.
"""
import logging
import queue
import threading
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional

from practicelog.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


def format_millis(millis: int) -> str:
    """Format milliseconds as HH:MM:SS."""
    total_seconds = max(0, int(millis)) // 1000
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class DetectionState:
    status_message: str = "Initializing..."
    accumulated_time_millis: int = 0
    total_session_time_millis: int = 0
    session_start_time_millis: int = 0

    @property
    def formatted_practice_time(self) -> str:
        return format_millis(self.accumulated_time_millis)

    @property
    def formatted_session_time(self) -> str:
        return format_millis(self.total_session_time_millis)

    def to_dict(self) -> dict:
        return {
            'statusMessage': self.status_message,
            'accumulatedTimeMillis': self.accumulated_time_millis,
            'totalSessionTimeMillis': self.total_session_time_millis,
            'sessionStartTimeMillis': self.session_start_time_millis,
            'formattedPracticeTime': self.formatted_practice_time,
            'formattedSessionTime': self.formatted_session_time,
        }


class Subscription:
    """
    Receives every state published after subscribing.

    Backed by an unbounded queue so the publisher never waits on a slow reader.
    """

    def __init__(self, holder: "DetectionStateHolder"):
        self._holder = holder
        self._queue: "queue.SimpleQueue[Optional[DetectionState]]" = queue.SimpleQueue()
        self.closed = False

    def _push(self, state: DetectionState):
        self._queue.put(state)

    def get(self, timeout: Optional[float] = None) -> Optional[DetectionState]:
        """
        Next published state, or None on timeout or after close().
        """
        if self.closed and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[DetectionState]:
        """All states queued so far, without waiting."""
        states = []
        while True:
            try:
                state = self._queue.get_nowait()
            except queue.Empty:
                return states
            if state is not None:
                states.append(state)

    def close(self):
        if not self.closed:
            self.closed = True
            self._holder.unsubscribe(self)
            self._queue.put(None)  # wake a blocked reader

    def __iter__(self) -> Iterator[DetectionState]:
        while True:
            state = self.get()
            if state is None:
                return
            yield state


class DetectionStateHolder:
    """Owns the current DetectionState for one tracker."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._subscribers: List[Subscription] = []
        self._state = DetectionState(session_start_time_millis=self.clock.now())

    @property
    def state(self) -> DetectionState:
        # Attribute reads are atomic; the snapshot itself is immutable.
        return self._state

    def reset(self) -> DetectionState:
        """Replace the state with defaults and a fresh session start time."""
        with self._lock:
            self._state = DetectionState(session_start_time_millis=self.clock.now())
            self._publish()
            logger.debug("Detection state reset")
            return self._state

    def update(self,
               status_message: Optional[str] = None,
               accumulated_time_millis: Optional[int] = None,
               total_session_time_millis: Optional[int] = None) -> DetectionState:
        """
        Replace the supplied fields, keeping the others.

        Args:
            status_message: New status text (None keeps the current one)
            accumulated_time_millis: New practice time (None keeps the current one)
            total_session_time_millis: New session span (None keeps the current one)

        Returns:
            The state now current
        """
        changes = {}
        if status_message is not None:
            changes['status_message'] = status_message
        if accumulated_time_millis is not None:
            changes['accumulated_time_millis'] = int(accumulated_time_millis)
        if total_session_time_millis is not None:
            changes['total_session_time_millis'] = int(total_session_time_millis)

        with self._lock:
            self._state = replace(self._state, **changes)
            self._publish()
            return self._state

    def subscribe(self) -> Subscription:
        """Subscribe to updates; the current state is delivered first."""
        subscription = Subscription(self)
        with self._lock:
            self._subscribers.append(subscription)
            subscription._push(self._state)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def _publish(self):
        # Called with the lock held so subscribers see updates in write order.
        for subscription in self._subscribers:
            subscription._push(self._state)
