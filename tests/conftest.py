"""Global test configuration: mock audio hardware modules before any imports.

PortAudio and the platform speech engines are not available on headless CI
machines, so sounddevice and pyttsx3 are replaced with MagicMock modules in
sys.modules before project code is imported.
"""

import sys
import threading
from types import ModuleType
from typing import List
from unittest.mock import MagicMock

import numpy as np
import pytest

_HARDWARE_MODULES = [
    # Audio I/O
    "sounddevice",
    # Text-to-speech
    "pyttsx3",
]

for _mod_name in _HARDWARE_MODULES:
    if _mod_name not in sys.modules:
        mock = MagicMock(spec=ModuleType)
        mock.__name__ = _mod_name
        mock.__path__ = []
        sys.modules[_mod_name] = mock


from practicelog.clock import ManualClock  # noqa: E402
from practicelog.database import PracticeDatabase  # noqa: E402
from practicelog.detection_state import DetectionStateHolder  # noqa: E402
from practicelog.timer_engine import PracticeTimer  # noqa: E402

# Simulated time starts well after zero so "unset" timestamps (0) never
# collide with real ones.
START_MILLIS = 1_000_000


class RecordingAnnouncer:
    """Collects announcements instead of speaking them."""

    def __init__(self):
        self.messages: List[str] = []

    def announce(self, text: str) -> None:
        self.messages.append(text)


@pytest.fixture
def clock():
    return ManualClock(START_MILLIS)


@pytest.fixture
def announcer():
    return RecordingAnnouncer()


@pytest.fixture
def state_holder(clock):
    return DetectionStateHolder(clock)


@pytest.fixture
def timer(clock, state_holder, announcer):
    return PracticeTimer(
        clock,
        state_holder,
        announcer,
        grace_period_ms=8000,
        auto_end_threshold_ms=20 * 60 * 1000,
        goal_minutes=0,
    )


@pytest.fixture
def db(tmp_path):
    database = PracticeDatabase(str(tmp_path / "practice.db"))
    yield database
    database.close()


class FakeAudioSource:
    """Audio source returning silent windows, or raising `error` when set."""

    sample_rate = 16000

    def __init__(self, error: Exception = None, open_error: Exception = None):
        self.error = error
        self.open_error = open_error
        self.opened = False
        self.closed = False
        self.reads = 0

    def open(self):
        if self.open_error:
            raise self.open_error
        self.opened = True

    def read_window(self):
        self.reads += 1
        if self.error:
            raise self.error
        return np.zeros(160, dtype=np.float32)

    def close(self):
        self.closed = True


class FakeClassifier:
    """Returns fixed categories; sets `called` after the first classification.

    With `release` set, each call blocks until that event is set.
    `returned` is set once any call has finished.
    """

    def __init__(self, categories=None, error: Exception = None, release: threading.Event = None):
        self.categories = categories if categories is not None else [("Silence", 0.9)]
        self.error = error
        self.release = release
        self.calls = 0
        self.called = threading.Event()
        self.returned = threading.Event()

    def classify(self, samples, sample_rate):
        self.calls += 1
        self.called.set()
        if self.release is not None:
            self.release.wait()
        try:
            if self.error:
                raise self.error
            return list(self.categories)
        finally:
            self.returned.set()


@pytest.fixture
def fake_source():
    return FakeAudioSource()


@pytest.fixture
def music_classifier():
    return FakeClassifier([("Piano", 0.92), ("Music", 0.6)])


@pytest.fixture
def silence_classifier():
    return FakeClassifier([("Silence", 0.95)])


@pytest.fixture
def make_source():
    return FakeAudioSource


@pytest.fixture
def make_classifier():
    return FakeClassifier
