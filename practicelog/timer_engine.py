"""
Practice timer: turns a noisy stream of music/not-music classifications into
practice time.

IMPORTANT: This module distinguishes two spans of time:

1. PRACTICE RUN: A stretch during which music keeps being detected.
   - Starts on the first positive classification while idle
   - Survives silences shorter than the grace period (breaths, page turns)
   - Ends once silence reaches the grace period; only the span up to the
     last positive classification is counted, never the trailing silence

2. SESSION: Everything between session start and stop.
   - May contain any number of practice runs
   - Ends on request, or by itself after auto_end_threshold_ms of idleness

Elapsed time is always derived from clock reads, never accumulated tick by
tick, so the result does not depend on how often the loops run.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import practicelog.config as config
from practicelog.announcer import Announcer, NullAnnouncer
from practicelog.clock import Clock
from practicelog.detection_state import DetectionStateHolder

logger = logging.getLogger(__name__)

PRACTICING_STATUS = "Practicing"
GOAL_REACHED_MESSAGE = "You did it! Goal reached."


@dataclass(frozen=True)
class TimerState:
    """Point-in-time copy of the timer's internal state."""
    is_playing: bool = False
    music_start_time_millis: int = 0
    accumulated_time_millis: int = 0
    last_music_detection_time_millis: int = 0
    last_announced_milestone: int = 0


class PracticeTimer:
    """
    Practice detection state machine.

    States:
    - Idle: no practice run in progress
    - Active: a practice run is in progress (including its grace period)

    The classification loop calls update_timer_state(); the UI loop calls
    update_ui_timer(). One lock guards all timer fields, so the two loops
    can run on different threads.

    Callbacks:
    - on_auto_end: Called once when the session has been idle for
      auto_end_threshold_ms. Runs on the caller's thread after the lock is
      released; it must not stop the loops synchronously.
    """

    def __init__(self,
                 clock: Clock,
                 state_holder: DetectionStateHolder,
                 announcer: Optional[Announcer] = None,
                 grace_period_ms: int = config.GRACE_PERIOD_MS,
                 auto_end_threshold_ms: int = config.AUTO_END_THRESHOLD_MS,
                 goal_minutes: int = config.GOAL_MINUTES,
                 on_auto_end: Optional[Callable[[], None]] = None):
        """
        Initialize practice timer.

        Args:
            clock: Time source (milliseconds)
            state_holder: Shared state the timer publishes to
            announcer: Receives progress announcements
            grace_period_ms: Silence tolerated before a practice run ends
            auto_end_threshold_ms: Idle time after which on_auto_end fires
            goal_minutes: Practice goal for milestone announcements (0 = none)
            on_auto_end: Called when the session should end by itself
        """
        self.clock = clock
        self.state_holder = state_holder
        self.announcer = announcer or NullAnnouncer()
        self.grace_period_ms = grace_period_ms
        self.auto_end_threshold_ms = auto_end_threshold_ms
        self.goal_minutes = goal_minutes
        self.on_auto_end = on_auto_end

        self._lock = threading.Lock()

        # Timer state
        self._is_playing = False
        self._music_start_time_millis = 0
        self._accumulated_time_millis = 0
        self._last_music_detection_time_millis = 0
        self._last_announced_milestone = 0

        # Session bookkeeping
        self._idle_since_millis = clock.now()
        self._idle_status = ""
        self._goal_reached_announced = False
        self._auto_end_triggered = False

    @classmethod
    def from_config(cls, session_config: config.SessionConfig, clock: Clock,
                    state_holder: DetectionStateHolder, announcer: Optional[Announcer] = None,
                    on_auto_end: Optional[Callable[[], None]] = None) -> "PracticeTimer":
        timer = cls(clock, state_holder, announcer=announcer, on_auto_end=on_auto_end)
        timer.configure(session_config)
        return timer

    def configure(self, session_config: config.SessionConfig):
        """Apply session configuration (call before reset_timer_state)."""
        session_config = session_config.validated()
        with self._lock:
            self.grace_period_ms = session_config.grace_period_ms
            self.auto_end_threshold_ms = session_config.auto_end_threshold_ms
            self.goal_minutes = session_config.goal_minutes

    @property
    def goal_millis(self) -> int:
        return self.goal_minutes * 60 * 1000

    @property
    def state(self) -> TimerState:
        with self._lock:
            return TimerState(
                is_playing=self._is_playing,
                music_start_time_millis=self._music_start_time_millis,
                accumulated_time_millis=self._accumulated_time_millis,
                last_music_detection_time_millis=self._last_music_detection_time_millis,
                last_announced_milestone=self._last_announced_milestone,
            )

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._is_playing

    @property
    def auto_end_triggered(self) -> bool:
        with self._lock:
            return self._auto_end_triggered

    def reset_timer_state(self):
        """Clear all timer state. Called once at session start."""
        with self._lock:
            self._is_playing = False
            self._music_start_time_millis = 0
            self._accumulated_time_millis = 0
            self._last_music_detection_time_millis = 0
            self._last_announced_milestone = 0
            self._idle_since_millis = self.clock.now()
            self._idle_status = ""
            self._goal_reached_announced = False
            self._auto_end_triggered = False
        logger.debug("Timer state reset")

    def update_timer_state(self, detected_music: bool, label: str, score: float):
        """
        Process one classification.

        Args:
            detected_music: Whether the window was classified as music
            label: Label of the winning category
            score: Confidence of the winning category
        """
        fire_auto_end = False

        with self._lock:
            now = self.clock.now()

            if detected_music:
                self._last_music_detection_time_millis = now
                status = f"{PRACTICING_STATUS}: {label}"

                if not self._is_playing:
                    self._is_playing = True
                    self._music_start_time_millis = now
                    logger.info(f"Music detected: {label} (score {score:.2f}) - starting timer")
                else:
                    logger.debug(f"Music continues: {label} (score {score:.2f})")

                self.state_holder.update(status_message=status)

            elif self._is_playing:
                if not self._last_music_detection_time_millis:
                    self._last_music_detection_time_millis = now

                silence_ms = now - self._last_music_detection_time_millis

                if silence_ms < self.grace_period_ms:
                    logger.debug(f"Within grace period: silence {silence_ms}ms of {self.grace_period_ms}ms")
                    self.state_holder.update(status_message=PRACTICING_STATUS)
                else:
                    self._end_run(label, silence_ms)

            else:
                logger.debug(f"No practice detected: {label} (score {score:.2f})")
                self.state_holder.update(
                    status_message=self._idle_status,
                    accumulated_time_millis=self._accumulated_time_millis,
                )
                fire_auto_end = self._check_auto_end(now)

        if fire_auto_end and self.on_auto_end:
            self.on_auto_end()

    def _end_run(self, label: str, silence_ms: int):
        # Lock held. The run ends at the last detection, not at `now`.
        elapsed = self._last_music_detection_time_millis - self._music_start_time_millis
        if elapsed > 0:
            self._accumulated_time_millis += elapsed
        else:
            elapsed = 0

        self._idle_since_millis = self._last_music_detection_time_millis
        self._is_playing = False
        self._music_start_time_millis = 0
        self._last_music_detection_time_millis = 0
        self._idle_status = f"Paused (Last sound: {label})"

        logger.info(f"Grace period expired after {silence_ms}ms of silence. "
                    f"Added {elapsed}ms, total {self._accumulated_time_millis}ms")
        self.state_holder.update(
            status_message=self._idle_status,
            accumulated_time_millis=self._accumulated_time_millis,
        )

    def _check_auto_end(self, now: int) -> bool:
        # Lock held
        if self._auto_end_triggered or self.auto_end_threshold_ms <= 0:
            return False
        idle_ms = now - self._idle_since_millis
        if idle_ms < self.auto_end_threshold_ms:
            return False
        self._auto_end_triggered = True
        logger.info(f"No practice for {idle_ms}ms (threshold {self.auto_end_threshold_ms}ms), "
                    f"ending session")
        return True

    def _live_time(self, now: int) -> int:
        # Lock held
        live = self._accumulated_time_millis
        if self._is_playing:
            live += max(0, now - self._music_start_time_millis)
        return live

    def update_ui_timer(self) -> int:
        """
        Publish the live practice time and session span, then check milestones.

        Does not modify timer state (apart from milestone bookkeeping).

        Returns:
            Live practice time in milliseconds
        """
        with self._lock:
            now = self.clock.now()
            live = self._live_time(now)
            session_start = self.state_holder.state.session_start_time_millis
            total = max(0, now - session_start)
            logger.debug(f"UI timer: practice {live}ms, session {total}ms")
            self.state_holder.update(
                accumulated_time_millis=live,
                total_session_time_millis=total,
            )

        self.check_progress_milestones(live, self.goal_millis, self.goal_minutes)
        self.check_goal_reached(live)
        return live

    def check_progress_milestones(self, elapsed_millis: int, goal_millis: int, goal_minutes: int):
        """
        Announce the quarter of the goal just crossed, if any.

        Only the quarter the elapsed time currently falls in is announced;
        quarters skipped by a long gap between calls are not replayed.
        """
        if goal_millis <= 0:
            return

        quartile = min(4, max(0, (4 * elapsed_millis) // goal_millis))
        message = None

        with self._lock:
            if quartile > self._last_announced_milestone and quartile in (1, 2, 3):
                remaining_minutes = goal_minutes - goal_minutes * quartile // 4
                message = f"Good progress! {remaining_minutes} minutes left."
                self._last_announced_milestone = quartile

        if message:
            logger.info(f"Milestone {quartile}/4 reached: {message}")
            self._announce(message)

    def check_goal_reached(self, elapsed_millis: int) -> bool:
        """Announce the goal once per session when it is reached."""
        if self.goal_minutes <= 0:
            return False

        with self._lock:
            if self._goal_reached_announced or elapsed_millis < self.goal_millis:
                return False
            self._goal_reached_announced = True
            self._last_announced_milestone = 4

        logger.info(f"Practice goal reached: {self.goal_minutes} minutes")
        self._announce(GOAL_REACHED_MESSAGE)
        return True

    def calculate_final_time(self) -> int:
        """
        Fold any in-progress run into the accumulated time.

        Called at session teardown so a session that ends mid-run keeps
        the practice time of that run.

        Returns:
            Final practice time in milliseconds
        """
        with self._lock:
            if self._is_playing:
                now = self.clock.now()
                elapsed = now - self._music_start_time_millis
                if elapsed > 0:
                    self._accumulated_time_millis += elapsed
                    logger.info(f"Session ending mid-practice, added final {elapsed}ms. "
                                f"Total {self._accumulated_time_millis}ms")
                self._is_playing = False
                self._music_start_time_millis = 0
                self._last_music_detection_time_millis = 0
                self._idle_since_millis = now
            return self._accumulated_time_millis

    def _announce(self, text: str):
        try:
            self.announcer.announce(text)
        except Exception as e:
            logger.error(f"Announcer failed for '{text}': {e}", exc_info=True)

    def set_state_for_test(self, is_playing: bool, music_start_time_millis: int,
                           accumulated_time_millis: int,
                           last_music_detection_time_millis: Optional[int] = None,
                           last_announced_milestone: Optional[int] = None):
        """Seed the timer with a scenario (tests only)."""
        with self._lock:
            self._is_playing = is_playing
            self._music_start_time_millis = music_start_time_millis
            self._accumulated_time_millis = accumulated_time_millis
            if last_music_detection_time_millis is not None:
                self._last_music_detection_time_millis = last_music_detection_time_millis
            if last_announced_milestone is not None:
                self._last_announced_milestone = last_announced_milestone
