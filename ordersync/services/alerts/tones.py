"""
Alert tone synthesis.

Two short sine cues, stepped in frequency every 100 ms:
    notification: 800 -> 600 -> 800 Hz (new order)
    completion:   600 -> 800 -> 1000 Hz (order ready / completed)

Gain starts at 0.1 and decays exponentially to 0.01 over the 0.3 s cue.
"""

import wave
from pathlib import Path
from typing import Dict, Tuple

import numpy as np

from ordersync.services.alerts.base import AlertKind

TONE_DURATION = 0.3
STEP_SECONDS = 0.1
START_GAIN = 0.1
END_GAIN = 0.01

FREQUENCIES: Dict[AlertKind, Tuple[float, float, float]] = {
    AlertKind.NOTIFICATION: (800.0, 600.0, 800.0),
    AlertKind.COMPLETION: (600.0, 800.0, 1000.0),
}


def synthesize(kind: AlertKind, sample_rate: int = 44100) -> np.ndarray:
    """Render the cue as float32 samples in [-1, 1]."""
    count = int(round(TONE_DURATION * sample_rate))
    t = np.arange(count, dtype=np.float64) / sample_rate

    steps = np.minimum((t / STEP_SECONDS).astype(int), 2)
    freq = np.asarray(FREQUENCIES[kind])[steps]

    # integrate frequency so the steps are phase-continuous
    phase = 2.0 * np.pi * np.cumsum(freq) / sample_rate
    gain = START_GAIN * (END_GAIN / START_GAIN) ** (t / TONE_DURATION)
    return (np.sin(phase) * gain).astype(np.float32)


def to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def write_wav(path: Path, kind: AlertKind, sample_rate: int = 44100) -> Path:
    """Write the cue as a mono 16-bit WAV file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(to_pcm16(synthesize(kind, sample_rate)))
    return path
