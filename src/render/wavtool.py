from __future__ import annotations

"""Phase-aligned overlap-add of independently resampled phone segments."""

from dataclasses import dataclass
import math
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
import soundfile as sf
from scipy import signal

from src.config import SAMPLE_RATE
from src.logging_utils import get_logger
from src.render.pitch import tone_to_freq
from src.render.time_axis import PITCH_INTERVAL_TICKS

logger = get_logger(__name__)

# Empirical phase-estimation constants; tune rather than derive.
WINDOW_HALF_SAMPLES = 440
WINDOW_SAMPLES = 2 * WINDOW_HALF_SAMPLES
PEAK_FILTER_Q = 5.0
AMPLITUDE_LIMIT = 10.0
MAX_FREQ_DEVIATION = 0.25
MIN_WINDOW_SAMPLES = 4

Envelope = List[Tuple[float, float]]


class CancelToken(Protocol):
    def is_set(self) -> bool:
        ...


class SegmentSource(Protocol):
    output_file: Optional[Path]
    envelope: Envelope
    position_ms: float
    skip_over_ms: float


@dataclass
class RenderSegment:
    samples: np.ndarray
    envelope: Envelope
    position: int
    skip_samples: int
    head_window_start: int = 0
    head_f0: Optional[float] = None
    head_phase: Optional[float] = None
    tail_window_start: int = 0
    tail_f0: Optional[float] = None
    tail_phase: Optional[float] = None
    correction: int = 0


def envelope_ms_to_samples(envelope: Sequence[Tuple[float, float]], skip_samples: int, sample_rate: int = SAMPLE_RATE) -> Envelope:
    """(ms, percent) points -> (sample index, gain), with the first point at ``skip_samples``."""
    if not envelope:
        return []
    shift = -envelope[0][0]
    return [((x + shift) * sample_rate / 1000.0 + skip_samples, y / 100.0) for x, y in envelope]


def _window(samples: np.ndarray, center: float) -> Tuple[int, np.ndarray]:
    start = max(int(center) - WINDOW_HALF_SAMPLES, 0)
    length = max(min(WINDOW_SAMPLES, len(samples) - start), 0)
    return start, samples[start : start + length]


def head_window(samples: np.ndarray, envelope: Envelope) -> Tuple[int, np.ndarray]:
    return _window(samples, (envelope[0][0] + envelope[1][0]) * 0.5)


def tail_window(samples: np.ndarray, envelope: Envelope) -> Tuple[int, np.ndarray]:
    return _window(samples, (envelope[-1][0] + envelope[-2][0]) * 0.5)


def f0_at_sample(
    pitch_curve: np.ndarray,
    sample_index: float,
    ms_per_tick: float,
    sample_rate: int = SAMPLE_RATE,
) -> Optional[float]:
    """Local fundamental (Hz) from the phrase pitch curve (absolute cents per 5 ticks)."""
    if len(pitch_curve) == 0:
        return None
    index = int(round(sample_index / sample_rate * 1000.0 / ms_per_tick / PITCH_INTERVAL_TICKS))
    index = min(max(index, 0), len(pitch_curve) - 1)
    return tone_to_freq(float(pitch_curve[index]) / 100.0)


def calc_phase(samples: np.ndarray, offset: int, fs: int, f: Optional[float]) -> Optional[float]:
    """Phase in (-pi, pi] of the component near ``f`` at the window centre, or None.

    ``offset`` is the window's first sample in phrase coordinates.
    """
    if f is None or len(samples) < MIN_WINDOW_SAMPLES:
        return None
    if not 0.0 < f < fs / 2.0:
        return None
    b, a = signal.iirpeak(f, PEAK_FILTER_Q, fs=fs)
    padlen = min(3 * max(len(a), len(b)), len(samples) - 1)
    filtered = signal.filtfilt(b, a, np.asarray(samples, dtype=np.float64), padlen=padlen)
    if filtered.max() > AMPLITUDE_LIMIT:
        return None
    n = len(filtered)
    left = 0
    right = 0
    for i in range(n // 2 - 1, 0, -1):
        if filtered[i] >= filtered[i - 1] and filtered[i] >= filtered[i + 1]:
            left = i
            break
    for i in range(n // 2, n - 1):
        if filtered[i] >= filtered[i - 1] and filtered[i] >= filtered[i + 1]:
            right = i
            break
    if left >= right:
        return None
    actual_f = fs / (right - left)
    if abs(f - actual_f) > f * MAX_FREQ_DEVIATION:
        return None
    t = (offset + (left + right) * 0.5) / fs * f
    phase = 2.0 * math.pi * (round(t) - t)
    if phase <= -math.pi:
        phase += 2.0 * math.pi
    return phase


def correction_for(prev: RenderSegment, current: RenderSegment, sample_rate: int = SAMPLE_RATE) -> int:
    """Integer sample shift aligning ``current``'s head with ``prev``'s (shifted) tail."""
    if prev.tail_phase is None or current.head_phase is None or not current.head_f0:
        return 0
    last_corr_angle = prev.correction * 2.0 * math.pi / sample_rate * current.head_f0
    diff = current.head_phase - (prev.tail_phase - last_corr_angle)
    diff = math.fmod(diff, 2.0 * math.pi)
    if diff < 0:
        diff += 2.0 * math.pi
    if abs(diff - 2.0 * math.pi) < diff:
        diff -= 2.0 * math.pi
    return int(diff / 2.0 / math.pi * sample_rate / current.head_f0)


def compute_corrections(segments: Sequence[RenderSegment], sample_rate: int = SAMPLE_RATE) -> None:
    """Assign corrections in order; each depends on the previous segment's correction."""
    for i in range(1, len(segments)):
        segments[i].correction = correction_for(segments[i - 1], segments[i], sample_rate)


def apply_envelope(samples: np.ndarray, envelope: Envelope) -> np.ndarray:
    """Piecewise-linear gain by sample index, flat beyond the first and last points."""
    samples = np.asarray(samples, dtype=np.float32)
    if not envelope or len(samples) == 0:
        return samples.copy()
    xs = np.array([p[0] for p in envelope], dtype=np.float64)
    ys = np.array([p[1] for p in envelope], dtype=np.float64)
    idx = np.arange(len(samples), dtype=np.float64)
    k = np.searchsorted(np.maximum.accumulate(xs), idx, side="left")
    gain = np.empty(len(samples), dtype=np.float64)
    gain[k == 0] = ys[0]
    gain[k >= len(xs)] = ys[-1]
    mid = (k > 0) & (k < len(xs))
    km = k[mid]
    x0, x1, y0, y1 = xs[km - 1], xs[km], ys[km - 1], ys[km]
    with np.errstate(divide="ignore", invalid="ignore"):
        interp = y0 + (y1 - y0) * (idx[mid] - x0) / (x1 - x0)
    gain[mid] = np.where(x0 >= x1, y0, interp)
    return (samples * gain).astype(np.float32)


def build_segment(
    samples: np.ndarray,
    envelope_ms: Sequence[Tuple[float, float]],
    position_ms: float,
    skip_over_ms: float,
    sample_rate: int = SAMPLE_RATE,
) -> RenderSegment:
    skip = int(round(skip_over_ms * sample_rate / 1000.0))
    return RenderSegment(
        samples=np.asarray(samples, dtype=np.float32),
        envelope=envelope_ms_to_samples(envelope_ms, skip, sample_rate),
        position=int(round(position_ms * sample_rate / 1000.0)),
        skip_samples=skip,
    )


def analyze_segment(
    segment: RenderSegment,
    pitch_curve: np.ndarray,
    ms_per_tick: float,
    sample_rate: int = SAMPLE_RATE,
) -> None:
    if len(segment.envelope) < 2:
        return
    base = segment.position - segment.skip_samples
    start, window = head_window(segment.samples, segment.envelope)
    segment.head_window_start = start
    segment.head_f0 = f0_at_sample(pitch_curve, base + start + len(window) / 2, ms_per_tick, sample_rate)
    segment.head_phase = calc_phase(window, base + start, sample_rate, segment.head_f0)
    start, window = tail_window(segment.samples, segment.envelope)
    segment.tail_window_start = start
    segment.tail_f0 = f0_at_sample(pitch_curve, base + start + len(window) / 2, ms_per_tick, sample_rate)
    segment.tail_phase = calc_phase(window, base + start, sample_rate, segment.tail_f0)
    if segment.head_phase is None or segment.tail_phase is None:
        logger.debug(
            "phase_unknown position=%s head=%s tail=%s",
            segment.position,
            segment.head_phase,
            segment.tail_phase,
        )


def assemble(segments: Sequence[RenderSegment]) -> np.ndarray:
    """Mix enveloped segments at position + correction, skipping each lead-in."""
    length = max((s.position + s.correction + len(s.samples) for s in segments), default=0)
    out = np.zeros(max(length, 0), dtype=np.float32)
    for segment in segments:
        data = apply_envelope(segment.samples, segment.envelope)
        dest = segment.position + segment.correction
        skip = segment.skip_samples
        lo = max(0, -skip, -dest)
        hi = min(len(data) - skip, len(out) - dest)
        if hi > lo:
            out[dest + lo : dest + hi] += data[skip + lo : skip + hi]
    return out


def concatenate_segments(
    segments: List[RenderSegment],
    pitch_curve: np.ndarray,
    ms_per_tick: float,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    for segment in segments:
        analyze_segment(segment, pitch_curve, ms_per_tick, sample_rate)
    compute_corrections(segments, sample_rate)
    return assemble(segments)


def read_segment_samples(path: Optional[Path], sample_rate: int = SAMPLE_RATE) -> Optional[np.ndarray]:
    """First channel of a rendered file, or None when it is not there (yet)."""
    if path is None or not Path(path).exists():
        return None
    try:
        data, file_rate = sf.read(str(path), dtype="float32", always_2d=True)
    except RuntimeError as exc:
        logger.warning("segment_unreadable path=%s error=%s", path, exc)
        return None
    if file_rate != sample_rate:
        logger.warning("segment_sample_rate_mismatch path=%s rate=%s expected=%s", path, file_rate, sample_rate)
    return data[:, 0]


def load_segments(items: Sequence[SegmentSource], sample_rate: int = SAMPLE_RATE) -> List[RenderSegment]:
    segments: List[RenderSegment] = []
    for item in items:
        samples = read_segment_samples(item.output_file, sample_rate)
        if samples is None:
            logger.debug("segment_missing path=%s", item.output_file)
            continue
        segments.append(
            build_segment(samples, item.envelope, item.position_ms, item.skip_over_ms, sample_rate)
        )
    return segments


def concatenate(
    items: Sequence[SegmentSource],
    pitch_curve: np.ndarray,
    ms_per_tick: float,
    *,
    cancel_event: Optional[CancelToken] = None,
    sample_rate: int = SAMPLE_RATE,
) -> Optional[np.ndarray]:
    """Concatenate rendered phone files into one phrase buffer.

    Returns None without touching any file when cancelled at entry. Items whose
    output file is absent contribute silence.
    """
    if cancel_event is not None and cancel_event.is_set():
        return None
    segments = load_segments(items, sample_rate)
    result = concatenate_segments(segments, pitch_curve, ms_per_tick, sample_rate)
    logger.debug(
        "concatenated items=%s segments=%s samples=%s corrections=%s",
        len(items),
        len(segments),
        len(result),
        [s.correction for s in segments],
    )
    return result
