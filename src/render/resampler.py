from __future__ import annotations

"""Resampler request building, UTAU pitch-bend wire format and renderers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import hashlib
import math
from pathlib import Path
import subprocess
import time
from typing import List, Optional, Sequence, Tuple

from src.logging_utils import get_logger
from src.render.phrase import RenderPhone, RenderPhrase
from src.render.pitch import PITCH_UNITS_PER_CENT, build_pitch_curve

logger = get_logger(__name__)

BASE64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
PITCH_MIN_CENTS = -2048
PITCH_MAX_CENTS = 2047
REQUIRED_LENGTH_STEP_MS = 50
TONE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")


def tone_to_name(tone: int) -> str:
    """MIDI tone to UTAU note name, 60 -> ``C4``."""
    return f"{TONE_NAMES[tone % 12]}{tone // 12 - 1}"


def _encode_int12(value: int) -> str:
    if value < 0:
        value += 4096
    return BASE64_ALPHABET[(value >> 6) & 63] + BASE64_ALPHABET[value & 63]


def encode_pitch_bend(pitches: Sequence[int]) -> str:
    """Encode pitch samples (tenths of cents) as UTAU base64 with ``#n#`` run-length.

    ``#n#`` repeats the previous two-character value ``n`` more times.
    """
    out: List[str] = []
    last = ""
    repeats = 0
    for pitch in pitches:
        cents = int(pitch / PITCH_UNITS_PER_CENT)
        cents = min(max(cents, PITCH_MIN_CENTS), PITCH_MAX_CENTS)
        token = _encode_int12(cents)
        if token == last:
            repeats += 1
            continue
        if repeats:
            out.append(f"#{repeats}#")
            repeats = 0
        out.append(token)
        last = token
    if repeats:
        out.append(f"#{repeats}#")
    return "".join(out)


def decode_pitch_bend(encoded: str) -> List[int]:
    """Inverse of ``encode_pitch_bend``; returns cents."""
    values: List[int] = []
    i = 0
    while i < len(encoded):
        if encoded[i] == "#":
            end = encoded.index("#", i + 1)
            count = int(encoded[i + 1 : end])
            if not values:
                raise ValueError("Run-length marker without a preceding value.")
            values.extend([values[-1]] * count)
            i = end + 1
            continue
        high = BASE64_ALPHABET.index(encoded[i])
        low = BASE64_ALPHABET.index(encoded[i + 1])
        value = (high << 6) | low
        if value >= 2048:
            value -= 4096
        values.append(value)
        i += 2
    return values


@dataclass
class ResamplerItem:
    """Everything needed to render one phone and place it in the phrase."""
    phrase_id: str
    phone_index: int
    alias: str
    input_file: Path
    tone: int
    velocity: int
    volume: int
    flags: str
    offset_ms: float
    required_length_ms: int
    consonant_ms: float
    cutoff_ms: float
    modulation: int
    tempo: float
    pitch: List[int]
    skip_over_ms: float
    position_ms: float
    envelope: List[Tuple[float, float]] = field(default_factory=list)
    output_file: Optional[Path] = None

    def resampler_args(self) -> List[str]:
        return [
            tone_to_name(self.tone),
            str(self.velocity),
            self.flags,
            f"{self.offset_ms:g}",
            str(self.required_length_ms),
            f"{self.consonant_ms:g}",
            f"{self.cutoff_ms:g}",
            str(self.volume),
            str(self.modulation),
            f"!{self.tempo:g}",
            encode_pitch_bend(self.pitch),
        ]

    def hash_parameters(self, resampler_name: str = "") -> str:
        payload = " ".join([resampler_name, str(self.input_file), *self.resampler_args()])
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def build_resampler_item(phrase: RenderPhrase, phone: RenderPhone, index: int) -> ResamplerItem:
    oto = phone.oto
    owner = phrase.notes[phone.note_index]
    stretch = 2.0 ** (1.0 - phone.velocity / 100.0)
    length = oto.preutter * stretch + phone.envelope[4][0]
    required_length = int(math.ceil(length / REQUIRED_LENGTH_STEP_MS + 1) * REQUIRED_LENGTH_STEP_MS)
    start_ms = phrase.tick_to_ms(phone.position - owner.position) - oto.preutter
    end_ms = phrase.tick_to_ms(phone.end - owner.position) - phone.tail_intrude_ms + phone.tail_overlap_ms
    return ResamplerItem(
        phrase_id=phrase.phrase_id,
        phone_index=index,
        alias=phone.alias,
        input_file=oto.file,
        tone=phone.tone,
        velocity=phone.velocity,
        volume=phone.volume,
        flags=phone.flags,
        offset_ms=oto.offset,
        required_length_ms=required_length,
        consonant_ms=oto.consonant,
        cutoff_ms=oto.cutoff,
        modulation=phone.modulation,
        tempo=phrase.bpm,
        pitch=build_pitch_curve(phrase.notes, phone.note_index, start_ms, end_ms),
        skip_over_ms=oto.preutter * stretch - phone.preutter_ms,
        position_ms=phrase.tick_to_ms(phone.position) - phone.preutter_ms - phrase.origin_ms,
        envelope=list(phone.envelope),
    )


def build_resampler_items(phrase: RenderPhrase) -> List[ResamplerItem]:
    return [build_resampler_item(phrase, phone, i) for i, phone in enumerate(phrase.phones)]


class Renderer(ABC):
    """Renders one resampler item to a wav file and returns its path."""

    name = "renderer"

    @abstractmethod
    def render(self, item: ResamplerItem) -> Path:
        raise NotImplementedError


class ExeResampler(Renderer):
    """Runs an UTAU-compatible resampler executable, caching outputs by parameter hash."""

    def __init__(self, executable: Path, cache_dir: Path, *, timeout_seconds: float = 30.0) -> None:
        self.executable = Path(executable)
        self.cache_dir = Path(cache_dir)
        self.timeout_seconds = timeout_seconds
        self.name = self.executable.name

    def output_path(self, item: ResamplerItem) -> Path:
        return self.cache_dir / f"{item.phrase_id}-{item.hash_parameters(self.name)}.wav"

    def render(self, item: ResamplerItem) -> Path:
        if not self.executable.exists():
            raise FileNotFoundError(
                f"Resampler executable not found at {self.executable}. Set RESAMPLER_PATH."
            )
        output = self.output_path(item)
        item.output_file = output
        if output.exists():
            logger.debug("resampler_cache_hit alias=%s path=%s", item.alias, output)
            return output
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_output = output.with_suffix(".tmp.wav")
        command = [str(self.executable), str(item.input_file), str(tmp_output), *item.resampler_args()]
        start = time.monotonic()
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise RuntimeError(
                f"Resampler timed out after {self.timeout_seconds}s for alias '{item.alias}'."
            ) from exc
        if completed.returncode != 0 or not tmp_output.exists():
            raise RuntimeError(
                f"Resampler failed for alias '{item.alias}' (exit={completed.returncode}): "
                f"{(completed.stderr or '').strip()[:500]}"
            )
        tmp_output.replace(output)
        logger.info(
            "resampler_rendered alias=%s path=%s elapsed_ms=%.2f",
            item.alias,
            output,
            (time.monotonic() - start) * 1000.0,
        )
        return output
