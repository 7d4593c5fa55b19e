"""
Audio classification boundary.

A classifier turns one window of samples into scored labels. This module
reduces those labels to a single ClassificationEvent ("is somebody playing
an instrument?") for the practice timer.
"""
import importlib
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

import numpy as np

import practicelog.config as config

logger = logging.getLogger(__name__)

Category = Tuple[str, float]

NO_RESULT_LABEL = "Silence/Unknown"


class ClassifierUnavailable(RuntimeError):
    """The classifier cannot be loaded or can no longer classify."""


class Classifier(Protocol):
    def classify(self, samples: np.ndarray, sample_rate: int) -> List[Category]:
        """Return (label, score) pairs, best first."""
        ...


@dataclass(frozen=True)
class ClassificationEvent:
    is_music: bool
    label: str
    score: float


def is_music_label(label: str, score: float,
                   singing_threshold: float = config.SINGING_CONFIDENCE_THRESHOLD) -> bool:
    """Whether a label names instrument practice."""
    label = label.lower()
    if any(keyword in label for keyword in config.MUSIC_KEYWORDS):
        return True
    if 'music' in label and 'background' not in label:
        return True
    # Speech is never practice; singing only with high confidence
    return 'singing' in label and score > singing_threshold


def select_music_event(categories: Sequence[Category],
                       threshold: float = config.MUSIC_CONFIDENCE_THRESHOLD) -> ClassificationEvent:
    """
    Reduce classifier output to one event.

    Args:
        categories: (label, score) pairs from the classifier
        threshold: Minimum score for a category to count as music

    Returns:
        The best qualifying music category as a positive event, otherwise a
        negative event carrying the top overall category
    """
    if not categories:
        return ClassificationEvent(False, NO_RESULT_LABEL, 0.0)

    music = [
        (label, score) for label, score in categories
        if score > threshold and is_music_label(label, score)
    ]
    if music:
        label, score = max(music, key=lambda c: c[1])
        return ClassificationEvent(True, label, float(score))

    label, score = max(categories, key=lambda c: c[1])
    return ClassificationEvent(False, label, float(score))


class EnergyClassifier:
    """
    Lightweight tonal-sound detector.

    Quiet windows are "Silence". Loud windows with a peaky spectrum (low
    spectral flatness, as sustained pitched notes produce) are "Musical
    instrument"; loud broadband windows are "Noise".
    """

    def __init__(self, silence_rms: float = 0.01, tonal_flatness: float = 0.3):
        self.silence_rms = silence_rms
        self.tonal_flatness = tonal_flatness

    def classify(self, samples: np.ndarray, sample_rate: int) -> List[Category]:
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return [("Silence", 1.0)]

        rms = float(np.sqrt(np.mean(samples ** 2)))
        if rms < self.silence_rms:
            return [("Silence", round(1.0 - rms / self.silence_rms, 3))]

        windowed = samples * np.hanning(samples.size)
        power = np.abs(np.fft.rfft(windowed)) ** 2 + 1e-12
        flatness = float(np.exp(np.mean(np.log(power))) / np.mean(power))

        # Map flatness to a confidence that the sound is tonal
        tonal_score = float(np.clip(1.0 - flatness / self.tonal_flatness, 0.0, 1.0))
        loudness = float(np.clip(rms / (self.silence_rms * 10), 0.0, 1.0))
        music_score = round(tonal_score * (0.5 + 0.5 * loudness), 3)
        noise_score = round(1.0 - music_score, 3)

        results = [("Musical instrument", music_score), ("Noise", noise_score)]
        results.sort(key=lambda c: c[1], reverse=True)
        return results


def load_classifier(factory_path: Optional[str] = None) -> Classifier:
    """
    Build a classifier from a "package.module:factory" path.

    Without a path the built-in EnergyClassifier is used.

    Raises:
        ClassifierUnavailable: If the factory cannot be imported or called
    """
    if not factory_path:
        return EnergyClassifier()

    module_name, _, attr = factory_path.partition(':')
    if not module_name or not attr:
        raise ClassifierUnavailable(f"Classifier path must look like 'module:factory', got {factory_path!r}")

    try:
        module = importlib.import_module(module_name)
        factory: Callable[[], Classifier] = getattr(module, attr)
        classifier = factory()
    except Exception as e:
        raise ClassifierUnavailable(f"Could not load classifier {factory_path!r}: {e}") from e

    if not callable(getattr(classifier, 'classify', None)):
        raise ClassifierUnavailable(f"{factory_path!r} did not produce an object with classify()")

    logger.info(f"Loaded classifier {factory_path}")
    return classifier
