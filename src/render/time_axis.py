from __future__ import annotations

"""Tick <-> millisecond conversion for note positions."""

TICKS_PER_BEAT = 480
PITCH_INTERVAL_TICKS = 5


def tick_to_ms(ticks: float, bpm: float) -> float:
    """Convert a tick span to milliseconds at a constant tempo."""
    return ticks * 60000.0 / (bpm * TICKS_PER_BEAT)


def ms_to_tick(ms: float, bpm: float) -> int:
    """Convert milliseconds to the nearest whole tick at a constant tempo."""
    return int(round(ms * bpm * TICKS_PER_BEAT / 60000.0))
