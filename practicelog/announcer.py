"""
Spoken progress announcements.

The timer hands finished sentences to an announcer and moves on; speech
happens on a worker thread so the timer never waits for audio playback.
"""
import logging
import threading
from queue import Empty, Queue
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class Announcer(Protocol):
    def announce(self, text: str) -> None:
        ...


class NullAnnouncer:
    """Announcer used when speech is disabled or unavailable."""

    def announce(self, text: str) -> None:
        logger.info(f"Announcement (not spoken): {text}")


class SpeechAnnouncer:
    """
    Offline text-to-speech via pyttsx3.

    announce() only queues the text. If the speech engine cannot be
    initialized, announcements are logged and dropped.
    """

    def __init__(self, rate: int = 150, volume: float = 1.0):
        self.rate = rate
        self.volume = volume
        self._queue: Queue = Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self.available = False

    def start(self):
        """Start the speech worker thread."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._worker, daemon=True, name="speech-announcer")
        self._thread.start()
        logger.info("Speech announcer started")

    def announce(self, text: str) -> None:
        if not text or not text.strip():
            return
        if not self._running:
            logger.warning(f"Speech announcer not running, dropping: {text}")
            return
        self._queue.put(text)

    def stop(self, timeout: float = 5.0):
        """Stop the worker after it finishes the current sentence."""
        if not self._running:
            return
        self._running = False
        self._queue.put(None)
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        logger.info("Speech announcer stopped")

    def _init_engine(self):
        try:
            import pyttsx3
            engine = pyttsx3.init()
            engine.setProperty("rate", self.rate)
            engine.setProperty("volume", self.volume)
            self.available = True
            logger.info("Text-to-speech initialized")
            return engine
        except Exception as e:
            logger.error(f"Text-to-speech initialization failed: {e}")
            self.available = False
            return None

    def _worker(self):
        # pyttsx3 engines must be driven from the thread that created them
        engine = self._init_engine()
        while True:
            try:
                text = self._queue.get(timeout=1.0)
            except Empty:
                if not self._running:
                    break
                continue
            if text is None:
                break
            if engine is None:
                logger.info(f"Announcement (speech unavailable): {text}")
                continue
            try:
                logger.debug(f"Speaking: {text}")
                engine.say(text)
                engine.runAndWait()
            except Exception as e:
                logger.error(f"Error speaking '{text}': {e}", exc_info=True)
