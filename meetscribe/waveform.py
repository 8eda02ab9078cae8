from __future__ import annotations

import logging
from typing import List

import numpy as np

_BLOCKS = " ▁▂▃▄▅▆▇█"
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


class LevelMonitor:
    """Frequency-band levels for a live recording meter.

    Follows the usual analyser-node recipe: a Blackman-windowed FFT of the
    most recent ``fft_size`` samples, magnitudes smoothed over time, converted
    to decibels and mapped into ``[MIN_DECIBELS, MAX_DECIBELS]``. The bins are
    grouped into ``bands`` bars scaled to 0-100.
    """

    def __init__(self, bands: int = 20, fft_size: int = 64, smoothing: float = 0.8) -> None:
        if fft_size // 2 < bands:
            raise ValueError("fft_size must provide at least one frequency bin per band")
        self.bands = bands
        self.fft_size = fft_size
        self.smoothing = max(0.0, min(float(smoothing), 1.0))
        self._window = np.blackman(fft_size)
        self._magnitudes = np.zeros(fft_size // 2)
        self._levels = [0.0] * bands
        self.active = False

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False
        self.reset()

    def reset(self) -> None:
        self._magnitudes = np.zeros(self.fft_size // 2)
        self._levels = [0.0] * self.bands

    def levels(self) -> List[float]:
        if not self.active:
            return [0.0] * self.bands
        return list(self._levels)

    def feed(self, frames: np.ndarray) -> None:
        if not self.active:
            return
        try:
            self._levels = self._compute(frames)
        except Exception as exc:
            logging.warning("Failed to update levels: %s", exc)

    def _compute(self, frames: np.ndarray) -> List[float]:
        samples = np.asarray(frames, dtype=np.float64)
        if samples.ndim > 1:
            samples = samples.mean(axis=1)
        samples = samples[-self.fft_size :]
        if len(samples) < self.fft_size:
            samples = np.pad(samples, (self.fft_size - len(samples), 0))

        spectrum = np.abs(np.fft.rfft(samples * self._window))[: self.fft_size // 2] / self.fft_size
        self._magnitudes = self.smoothing * self._magnitudes + (1.0 - self.smoothing) * spectrum

        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(self._magnitudes)
        scaled = (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
        scaled = np.clip(np.nan_to_num(scaled, nan=0.0, neginf=0.0), 0.0, 1.0)

        return [float(group.mean() * 100.0) for group in np.array_split(scaled, self.bands)]


def render(levels: List[float]) -> str:
    """Return a one-line bar graph for terminal display."""

    top = len(_BLOCKS) - 1
    return "".join(_BLOCKS[min(top, int(round(level / 100.0 * top)))] for level in levels)
