from __future__ import annotations

"""Pitch curve synthesis from authored pitch points and vibrato."""

from bisect import bisect_right
from dataclasses import dataclass, field
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.phonemizer.types import Note, PitchPoint, PitchShape, Vibrato
from src.render.time_axis import PITCH_INTERVAL_TICKS, tick_to_ms

PITCH_UNITS_PER_CENT = 10


def interpolate_shape(x0: float, x1: float, y0: float, y1: float, x: float, shape: PitchShape) -> float:
    if x1 <= x0:
        return y1
    t = min(max((x - x0) / (x1 - x0), 0.0), 1.0)
    if shape == PitchShape.STEP:
        return y0 if t < 1.0 else y1
    if shape == PitchShape.LINEAR:
        return y0 + (y1 - y0) * t
    if shape == PitchShape.EASE_IN:
        return y0 + (y1 - y0) * (1.0 - math.cos(t * math.pi / 2.0))
    if shape == PitchShape.EASE_OUT:
        return y0 + (y1 - y0) * math.sin(t * math.pi / 2.0)
    return y0 + (y1 - y0) * (1.0 - math.cos(t * math.pi)) / 2.0


def vibrato_value(vibrato: Vibrato, pos_ms: float, length_ms: float) -> float:
    """Vibrato offset in cents ``pos_ms`` into a window of ``length_ms``."""
    in_ms = length_ms * vibrato.fade_in / 100.0
    out_ms = length_ms * vibrato.fade_out / 100.0
    value = -math.sin(2.0 * math.pi * (pos_ms / vibrato.period + vibrato.shift / 100.0)) * vibrato.depth
    if pos_ms < in_ms:
        value *= pos_ms / in_ms
    elif pos_ms > length_ms - out_ms:
        value *= (length_ms - pos_ms) / out_ms
    return value


@dataclass
class PitchContext:
    """Pitch points and vibrato windows re-based onto one note's origin (ms, cents)."""
    points: List[PitchPoint] = field(default_factory=list)
    vibratos: List[Tuple[float, float, Vibrato]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.points.sort(key=lambda p: p.x)
        self.vibratos.sort(key=lambda v: v[0])
        self._xs = [p.x for p in self.points]

    def value_at(self, t: float) -> float:
        """Deviation in cents at ``t`` ms from the note origin."""
        pitch = 0.0
        if self.points:
            if t <= self._xs[0]:
                pitch = self.points[0].y
            elif t >= self._xs[-1]:
                pitch = self.points[-1].y
            else:
                i = bisect_right(self._xs, t) - 1
                a, b = self.points[i], self.points[i + 1]
                pitch = interpolate_shape(a.x, b.x, a.y, b.y, t, a.shape)
        for start, end, vibrato in self.vibratos:
            if start <= t < end:
                pitch += vibrato_value(vibrato, t - start, end - start)
                break
        return pitch


def _neighbour_range(notes: Sequence[Note], index: int) -> Tuple[int, int]:
    first = index - 1 if index > 0 else index
    last = index
    while last + 1 < len(notes) and notes[last + 1].is_continuation:
        last += 1
    if last + 1 < len(notes) and notes[last + 1].position == notes[last].end:
        last += 1
    return first, last


def collect_pitch_context(
    notes: Sequence[Note],
    index: int,
    window: Optional[Tuple[float, float]] = None,
) -> PitchContext:
    """Gather points and vibratos for ``notes[index]`` from itself and its neighbours.

    The previous note and the contiguous next note only contribute points when their
    re-based point range overlaps ``window`` (when a window is given).
    """
    owner = notes[index]
    bpm = owner.bpm
    first, last = _neighbour_range(notes, index)
    points: List[PitchPoint] = []
    vibratos: List[Tuple[float, float, Vibrato]] = []
    for i in range(first, last + 1):
        note = notes[i]
        offset_ms = tick_to_ms(owner.position - note.position, bpm)
        shift = (owner.tone - note.tone) * 100
        rebased = [PitchPoint(p.x - offset_ms, p.y - shift, p.shape) for p in note.pitch_points]
        if rebased and window is not None and i != index and not note.is_continuation:
            low = min(p.x for p in rebased)
            high = max(p.x for p in rebased)
            if high < window[0] or low > window[1]:
                rebased = []
        points.extend(rebased)
        if note.vibrato.is_active:
            start_tick = note.position + note.duration * (1 - note.vibrato.length / 100.0)
            vibratos.append(
                (
                    tick_to_ms(start_tick - owner.position, bpm),
                    tick_to_ms(note.end - owner.position, bpm),
                    note.vibrato,
                )
            )
    return PitchContext(points=points, vibratos=vibratos)


def build_pitch_curve(notes: Sequence[Note], index: int, start_ms: float, end_ms: float) -> List[int]:
    """Pitch deviation in tenths of cents every 5 ticks over [start_ms, end_ms).

    Times are ms relative to ``notes[index]``'s start.
    """
    owner = notes[index]
    context = collect_pitch_context(notes, index, (start_ms, end_ms))
    interval_ms = tick_to_ms(PITCH_INTERVAL_TICKS, owner.bpm)
    pitches: List[int] = []
    current = start_ms
    while current < end_ms:
        pitches.append(int(context.value_at(current) * PITCH_UNITS_PER_CENT))
        current += interval_ms
    return pitches


def build_phrase_pitch_curve(notes: Sequence[Note], origin_tick: float, length_ms: float) -> np.ndarray:
    """Absolute pitch in cents (tone * 100 + deviation) every 5 ticks from ``origin_tick``.

    Index 0 is ``origin_tick``; each sample belongs to the last note starting at or
    before it (the first note before the phrase begins).
    """
    if not notes:
        return np.zeros(0, dtype=np.float64)
    bpm = notes[0].bpm
    interval_ms = tick_to_ms(PITCH_INTERVAL_TICKS, bpm)
    count = int(math.ceil(max(length_ms, 0.0) / interval_ms)) + 1
    positions = [n.position for n in notes]
    contexts: Dict[int, PitchContext] = {}
    curve = np.zeros(count, dtype=np.float64)
    for k in range(count):
        tick = origin_tick + k * PITCH_INTERVAL_TICKS
        owner_index = max(bisect_right(positions, tick) - 1, 0)
        context = contexts.get(owner_index)
        if context is None:
            context = collect_pitch_context(notes, owner_index)
            contexts[owner_index] = context
        owner = notes[owner_index]
        curve[k] = owner.tone * 100 + context.value_at(tick_to_ms(tick - owner.position, bpm))
    return curve


def tone_to_freq(tone: float) -> float:
    """MIDI tone (fractional allowed) to Hz, A4 = 69 = 440 Hz."""
    return 440.0 * 2.0 ** ((tone - 69.0) / 12.0)
