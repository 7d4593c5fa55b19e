"""
Practice tracking core (microphone classification + practice timer + persistence + web updates).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from practicelog.announcer import Announcer, NullAnnouncer
from practicelog.audio import AudioSourceUnavailable, MicrophoneSource
from practicelog.classifier import ClassifierUnavailable, load_classifier
from practicelog.clock import Clock, SystemClock
from practicelog.config import SessionConfig
from practicelog.database import PracticeDatabase
from practicelog.detection_state import DetectionStateHolder
from practicelog.scheduler import SessionScheduler
from practicelog.session import PracticeSession
from practicelog.timer_engine import PracticeTimer
from practicelog.web_server import PracticelogWebServer
import practicelog.config as config

logger = logging.getLogger(__name__)


class PracticeTracker:
    """
    Owns the lifecycle of practice sessions.

    A session is started explicitly and ends when stop_session() is called,
    when the timer reports auto-end, or when the microphone/classifier is
    lost. Auto-end and input loss only *request* a stop: they happen on the
    classification thread, which cannot join itself. A supervisor thread,
    started with the first session and kept until stop(), performs the
    teardown for every request, however the session was started.
    """

    def __init__(self,
                 db: PracticeDatabase,
                 clock: Optional[Clock] = None,
                 announcer: Optional[Announcer] = None,
                 audio_source_factory: Optional[Callable[[], object]] = None,
                 classifier_factory: Optional[Callable[[], object]] = None,
                 config_overrides: Optional[Dict] = None,
                 enable_web_server: bool = False,
                 web_port: Optional[int] = None):
        """
        Initialize practice tracker components.

        Args:
            db: Session persistence
            clock: Time source (defaults to the system clock)
            announcer: Receives milestone announcements
            audio_source_factory: Builds the audio source for a session
            classifier_factory: Builds the classifier for a session
            config_overrides: SessionConfig fields that override stored settings
            enable_web_server: Serve the web API while running
            web_port: Web server port (defaults to config.WEB_PORT)
        """
        self.db = db
        self.clock = clock or SystemClock()
        self.announcer = announcer or NullAnnouncer()
        self.audio_source_factory = audio_source_factory or MicrophoneSource
        self.classifier_factory = classifier_factory or load_classifier
        self.config_overrides = {k: v for k, v in (config_overrides or {}).items() if v is not None}

        self.state_holder = DetectionStateHolder(self.clock)
        self.timer = PracticeTimer(self.clock, self.state_holder, self.announcer,
                                   on_auto_end=self._on_auto_end)

        self.session_config: Optional[SessionConfig] = None
        self.scheduler: Optional[SessionScheduler] = None
        self.audio_source = None
        self.classifier = None
        self.targeted_goal_ids: List[int] = []

        self.session_active = False
        self.stop_reason: Optional[str] = None
        self.last_session: Optional[PracticeSession] = None
        self._stop_requested = threading.Event()
        self._session_ended = threading.Event()
        self._session_ended.set()
        self._lifecycle_lock = threading.RLock()
        self._closing = threading.Event()
        self._supervisor: Optional[threading.Thread] = None

        # Callbacks
        self.on_session_start: Optional[Callable[[], None]] = None
        self.on_session_end: Optional[Callable[[Optional[PracticeSession]], None]] = None

        self.web_server = None
        if enable_web_server:
            port = web_port if web_port is not None else config.WEB_PORT
            self.web_server = PracticelogWebServer(self, port=port)

    def build_session_config(self) -> SessionConfig:
        """Defaults, then stored settings, then explicit overrides."""
        stored = SessionConfig(
            grace_period_ms=self.db.get_grace_period_ms(),
            auto_end_threshold_ms=self.db.get_auto_end_threshold_ms(),
            goal_minutes=self.db.get_goal_minutes(),
        )
        return replace(stored, **self.config_overrides).validated()

    def set_targeted_goals(self, goal_ids: List[int]):
        """Technical goals to attach to the next saved session."""
        self.targeted_goal_ids = list(goal_ids)

    def start_session(self) -> bool:
        """
        Start a practice session.

        Returns:
            True if a session was started, False if one was already active

        Raises:
            AudioSourceUnavailable, ClassifierUnavailable: If input cannot be acquired
        """
        with self._lifecycle_lock:
            if self.session_active:
                logger.warning("Session already active")
                return False

            self.session_config = self.build_session_config()
            self.timer.configure(self.session_config)
            self.timer.reset_timer_state()
            self.state_holder.reset()
            self._ensure_supervisor()
            self._stop_requested.clear()
            self.stop_reason = None

            audio_source = None
            try:
                audio_source = self.audio_source_factory()
                audio_source.open()
                classifier = self.classifier_factory()
            except (AudioSourceUnavailable, ClassifierUnavailable) as e:
                logger.error(f"Cannot start session: {e}")
                if audio_source is not None:
                    audio_source.close()
                self.state_holder.update(status_message=f"Unavailable: {e}")
                raise

            self.audio_source = audio_source
            self.classifier = classifier
            self.scheduler = SessionScheduler(
                self.timer, audio_source, classifier, self.session_config,
                on_fatal=self._on_fatal,
            )
            self.session_active = True
            self._session_ended.clear()
            self.scheduler.start()

            logger.info(f"Practice session started (grace {self.session_config.grace_period_ms}ms, "
                        f"auto-end {self.session_config.auto_end_threshold_ms}ms, "
                        f"goal {self.session_config.goal_minutes}min)")

        if self.on_session_start:
            self.on_session_start()
        if self.web_server:
            self.web_server.notify_session_start()
        return True

    def stop_session(self, save: bool = True) -> Optional[PracticeSession]:
        """
        End the current session.

        Stops both loops, folds any in-progress run into the practice time,
        publishes the final state, then releases audio resources.

        Args:
            save: Persist the session record

        Returns:
            The saved session, or None if nothing was saved
        """
        with self._lifecycle_lock:
            if not self.session_active:
                return None

            self.scheduler.stop()

            practice_time_ms = self.timer.calculate_final_time()
            total_time_ms = max(0, self.clock.now() - self.state_holder.state.session_start_time_millis)
            self.state_holder.update(
                status_message="",
                accumulated_time_millis=practice_time_ms,
                total_session_time_millis=total_time_ms,
            )

            self._release_inputs()
            self.session_active = False
            self.scheduler = None

            logger.info(f"Practice session ended: practice {practice_time_ms / 60000:.1f} min "
                        f"of {total_time_ms / 60000:.1f} min"
                        + (f" ({self.stop_reason})" if self.stop_reason else ""))

            session = None
            if save:
                session = self.db.save_session(total_time_ms, practice_time_ms,
                                               targeted_goal_ids=self.targeted_goal_ids)
            self.targeted_goal_ids = []
            self.last_session = session
            self._session_ended.set()

        if self.on_session_end:
            self.on_session_end(session)
        if self.web_server:
            self.web_server.notify_session_end(session, self.stop_reason)
        return session

    def _release_inputs(self):
        if self.audio_source is not None:
            self.audio_source.close()
            self.audio_source = None
        close = getattr(self.classifier, 'close', None)
        if callable(close):
            try:
                close()
            except Exception as e:
                logger.error(f"Error closing classifier: {e}", exc_info=True)
        self.classifier = None

    def request_stop(self, reason: str):
        """Ask the supervisor thread to end the session. Safe from any thread."""
        # The first reason since start_session wins
        if self.stop_reason is not None:
            return
        logger.info(f"Session stop requested: {reason}")
        self.stop_reason = reason
        self._stop_requested.set()

    def wait_for_session_end(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no session is active.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            False on timeout. The ended session is in `last_session`.
        """
        return self._session_ended.wait(timeout)

    def _ensure_supervisor(self):
        if self._supervisor is not None and self._supervisor.is_alive():
            return
        self._closing.clear()
        self._supervisor = threading.Thread(target=self._supervise, daemon=True, name="session-supervisor")
        self._supervisor.start()

    def _supervise(self):
        while True:
            self._stop_requested.wait()
            if self._closing.is_set():
                break
            try:
                self._handle_stop_request()
            except Exception as e:
                logger.error(f"Error ending session: {e}", exc_info=True)
        logger.debug("Session supervisor exited")

    def _handle_stop_request(self):
        # start_session clears the flag under the same lock, so a request never ends a newer session
        with self._lifecycle_lock:
            if not self._stop_requested.is_set():
                return
            self._stop_requested.clear()
            if self.session_active:
                self.stop_session()

    def stop_supervisor(self, timeout: float = 5.0):
        """Stop the supervisor thread. Pending stop requests are dropped."""
        supervisor = self._supervisor
        if supervisor is None:
            return
        self._closing.set()
        self._stop_requested.set()
        if supervisor is not threading.current_thread():
            supervisor.join(timeout=timeout)
        self._supervisor = None

    def _on_auto_end(self):
        minutes = self.timer.auto_end_threshold_ms / 60000
        self.request_stop(f"no practice for {minutes:g} minutes")

    def _on_fatal(self, error: Exception):
        self.request_stop(f"input unavailable: {error}")

    def start(self):
        """Start process-wide services (speech, web server)."""
        start_announcer = getattr(self.announcer, 'start', None)
        if callable(start_announcer):
            start_announcer()

        if self.web_server:
            self.web_server.start()
            logger.info(f"Web interface available at http://localhost:{self.web_server.port}")

    def stop(self):
        """Stop the practice tracker."""
        logger.info("Practice Tracker stopping...")
        self.stop_supervisor()
        self.stop_session()

        stop_announcer = getattr(self.announcer, 'stop', None)
        if callable(stop_announcer):
            stop_announcer()

        if self.web_server:
            self.web_server.stop()

        self.db.close()
