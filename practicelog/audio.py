"""
Microphone capture for classification.
"""
import logging
import threading
from collections import deque
from typing import Optional, Union

import numpy as np
import sounddevice as sd

import practicelog.config as config

logger = logging.getLogger(__name__)

BLOCK_SAMPLES = 1600  # 100ms at 16kHz


class AudioSourceUnavailable(RuntimeError):
    """The microphone cannot be opened or has stopped delivering audio."""


class MicrophoneSource:
    """
    Continuously records mono audio into a ring buffer.

    The classification loop pulls the most recent window with read_window();
    it never waits on the audio device.
    """

    def __init__(self,
                 sample_rate: int = config.SAMPLE_RATE,
                 window_seconds: float = config.WINDOW_SECONDS,
                 device: Optional[Union[int, str]] = None):
        """
        Initialize microphone source.

        Args:
            sample_rate: Capture rate in Hz
            window_seconds: Length of the window returned by read_window()
            device: sounddevice input device (None for the system default)
        """
        self.sample_rate = sample_rate
        self.window_samples = int(sample_rate * window_seconds)
        self.device = device
        self._stream: Optional[sd.InputStream] = None
        self._lock = threading.Lock()
        self._buffer: deque = deque(maxlen=self.window_samples)
        self._overflows = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self):
        """
        Open and start the input stream.

        Raises:
            AudioSourceUnavailable: If the device cannot be opened
        """
        if self._stream is not None:
            return
        try:
            stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=BLOCK_SAMPLES,
                callback=self._audio_callback,
            )
            stream.start()
        except Exception as e:
            raise AudioSourceUnavailable(f"Could not open microphone: {e}") from e

        self._stream = stream
        logger.info(f"Microphone opened ({self.sample_rate}Hz mono, device={self.device})")

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status):
        # Runs on the PortAudio thread; keep it minimal
        if status:
            self._overflows += 1
            logger.debug(f"Audio status: {status}")
        with self._lock:
            self._buffer.extend(indata[:, 0])

    def read_window(self) -> np.ndarray:
        """
        Return the latest window of samples, zero-padded while the buffer fills.

        Raises:
            AudioSourceUnavailable: If the stream is closed or has stopped
        """
        stream = self._stream
        if stream is None or not stream.active:
            raise AudioSourceUnavailable("Microphone stream is not active")

        with self._lock:
            samples = np.fromiter(self._buffer, dtype=np.float32, count=len(self._buffer))

        if samples.size < self.window_samples:
            samples = np.pad(samples, (self.window_samples - samples.size, 0))
        return samples

    def close(self):
        """Stop and close the stream. Safe to call more than once."""
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.error(f"Error closing microphone: {e}", exc_info=True)
        with self._lock:
            self._buffer.clear()
        logger.info("Microphone closed")
