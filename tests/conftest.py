from __future__ import annotations

import numpy as np
import pytest

FS = 30.0


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCamera:
    """Camera collaborator that only records open/close calls."""

    def __init__(self, fail_with: Exception | None = None,
                 close_fails_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.close_fails_with = close_fails_with
        self.opened = 0
        self.closed = 0

    def open(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.opened += 1

    def close(self) -> None:
        self.closed += 1
        if self.close_fails_with is not None:
            raise self.close_fails_with


def pulse_wave(n: int, bpm: float = 72.0, fs: float = FS,
               mean: float = 150.0, amplitude: float = 30.0) -> np.ndarray:
    """Sinusoidal intensity trace at *bpm* sampled at *fs*."""
    i = np.arange(n)
    return mean + amplitude * np.sin(2 * np.pi * (bpm / 60.0) * i / fs)


def spike_train(n: int, positions, height: float = 50.0, base: float = 150.0) -> np.ndarray:
    """Flat baseline with one-sample spikes at *positions*."""
    x = np.full(n, base)
    x[list(positions)] += height
    return x


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
