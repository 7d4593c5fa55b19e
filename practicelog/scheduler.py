"""
Periodic loops that drive the practice timer during a session.

Two loops run on their own threads:
- classification: pull an audio window, classify it, feed the timer
- UI refresh: publish the live practice time at a steady cadence

Keeping them separate lets the display tick every second regardless of how
long classification takes.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from practicelog.audio import AudioSourceUnavailable
from practicelog.classifier import (
    ClassificationEvent,
    ClassifierUnavailable,
    select_music_event,
)
from practicelog.config import SessionConfig
from practicelog.timer_engine import PracticeTimer

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs `target` every `interval_ms` on a daemon thread until stopped."""

    def __init__(self, name: str, interval_ms: int, target: Callable[[], None]):
        self.name = name
        self.interval_ms = interval_ms
        self.target = target
        self.tick_count = 0
        self.last_tick_time: Optional[float] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            logger.warning(f"Task {self.name} already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        logger.debug(f"Task {self.name} started ({self.interval_ms}ms)")

    def stop(self, timeout: float = 5.0):
        """Stop the loop and wait for the current tick to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Task {self.name} did not stop within {timeout}s")
        self._thread = None
        logger.debug(f"Task {self.name} stopped after {self.tick_count} ticks")

    def _run(self):
        interval = self.interval_ms / 1000.0
        next_run = time.monotonic()

        # Fixed rate: first tick immediately, then on a steady schedule
        while not self._stop_event.is_set():
            self.last_tick_time = time.monotonic()
            self.tick_count += 1
            try:
                self.target()
            except Exception as e:
                logger.error(f"Error in task {self.name}: {e}", exc_info=True)

            next_run += interval
            delay = next_run - time.monotonic()
            if delay < 0:
                # Fell behind; skip missed ticks rather than bursting
                next_run = time.monotonic()
                delay = 0
            if self._stop_event.wait(delay):
                break



class SessionScheduler:
    """
    Owns the classification and UI refresh loops for one session.

    Reading and classifying run on a single worker thread so a tick can give
    up after `classification_timeout_ms`. A stalled call keeps the worker
    busy; later ticks are skipped until it returns. Once `stop()` returns,
    no tick touches the timer again, even if a stalled call completes later.

    Callbacks:
    - on_fatal: Called with the exception when the audio source or
      classifier becomes unavailable. The classification loop stops
      feeding the timer; the owner is expected to end the session.
    """

    def __init__(self,
                 timer: PracticeTimer,
                 audio_source,
                 classifier,
                 session_config: SessionConfig,
                 on_fatal: Optional[Callable[[Exception], None]] = None):
        self.timer = timer
        self.audio_source = audio_source
        self.classifier = classifier
        self.config = session_config.validated()
        self.on_fatal = on_fatal
        self.failed = False
        self.transient_failures = 0

        self._stopped = threading.Event()
        self._tick_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None

        self.classification_task = PeriodicTask(
            "classification", self.config.classification_interval_ms, self.classification_tick)
        self.ui_task = PeriodicTask(
            "ui-refresh", self.config.ui_update_interval_ms, self.ui_tick)

    @property
    def running(self) -> bool:
        return self.classification_task.running or self.ui_task.running

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self):
        """Start both loops."""
        self.failed = False
        self._stopped.clear()
        self._pending = None
        self.classification_task.start()
        self.ui_task.start()
        logger.info(f"Scheduler started: classification every {self.config.classification_interval_ms}ms, "
                    f"UI every {self.config.ui_update_interval_ms}ms")

    def stop(self):
        """Stop both loops; returns once neither will touch the timer again."""
        with self._tick_lock:
            self._stopped.set()
        self.classification_task.stop()
        self.ui_task.stop()

        executor = self._executor
        self._executor = None
        if executor is not None:
            if self._pending is not None and not self._pending.done():
                logger.warning("Classification still running at stop; its result will be dropped")
            executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Scheduler stopped")

    def _read_and_classify(self):
        samples = self.audio_source.read_window()
        return self.classifier.classify(samples, self.audio_source.sample_rate)

    def classify_once(self) -> Optional[ClassificationEvent]:
        """
        Read one window and classify it, giving up after the configured timeout.

        Returns:
            The event, or None if this tick failed transiently or timed out

        Raises:
            AudioSourceUnavailable, ClassifierUnavailable: On fatal input loss
        """
        if self._pending is not None and not self._pending.done():
            self.transient_failures += 1
            logger.warning("Previous classification still running, skipping tick")
            return None

        timeout = self.config.classification_timeout_ms / 1000.0
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="classify")
        try:
            self._pending = self._executor.submit(self._read_and_classify)
            categories = self._pending.result(timeout=timeout)
        except (AudioSourceUnavailable, ClassifierUnavailable):
            raise
        except FutureTimeoutError:
            self.transient_failures += 1
            logger.warning(f"Classification took longer than {timeout:g}s, skipping tick")
            return None
        except Exception as e:
            self.transient_failures += 1
            logger.warning(f"Classification failed, skipping tick: {e}")
            return None

        event = select_music_event(categories, self.config.music_confidence_threshold)
        logger.debug(f"Classified: {event}")
        return event

    def classification_tick(self):
        if self.failed or self.stopped:
            return
        try:
            event = self.classify_once()
        except (AudioSourceUnavailable, ClassifierUnavailable) as e:
            if self.stopped:
                return
            self.failed = True
            logger.error(f"Input unavailable, ending session: {e}", exc_info=True)
            if self.on_fatal:
                self.on_fatal(e)
            return

        if event is None:
            return
        with self._tick_lock:
            if self.stopped:
                logger.debug(f"Dropping result after stop: {event}")
                return
            self.timer.update_timer_state(event.is_music, event.label, event.score)

    def ui_tick(self):
        with self._tick_lock:
            if self.stopped:
                return
            self.timer.update_ui_timer()
