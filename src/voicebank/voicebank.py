from __future__ import annotations

"""UTAU voicebank: oto alias table plus subbank prefix/suffix mapping by tone."""

from dataclasses import dataclass, field
from pathlib import Path
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from src.logging_utils import get_logger
from src.voicebank.oto import OTO_FILENAME, Oto, parse_oto_ini

logger = get_logger(__name__)

CHARACTER_YAML = "character.yaml"
DEFAULT_TEXT_ENCODING = "shift_jis"
_NOTE_NAMES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}
_TONE_NAME_RE = re.compile(r"^([A-Ga-g])(#|b)?(-?\d+)$")


def tone_from_name(name: str) -> int:
    """``C4`` -> 60, ``A#3`` -> 58."""
    match = _TONE_NAME_RE.match(name.strip())
    if not match:
        raise ValueError(f"Invalid tone name '{name}'. Expected e.g. 'C4' or 'F#3'.")
    letter, accidental, octave = match.groups()
    tone = _NOTE_NAMES[letter.upper()] + (int(octave) + 1) * 12
    if accidental == "#":
        tone += 1
    elif accidental == "b":
        tone -= 1
    return tone


def parse_tone_range(value: str) -> Tuple[int, int]:
    """``C1-C4`` -> (24, 60); a single name is a one-tone range."""
    text = str(value).strip()
    if "-" in text[1:]:
        split_at = text.index("-", 1)
        low, high = text[:split_at], text[split_at + 1 :]
        return tone_from_name(low), tone_from_name(high)
    tone = tone_from_name(text)
    return tone, tone


@dataclass(frozen=True)
class Subbank:
    prefix: str = ""
    suffix: str = ""
    tone_ranges: Tuple[Tuple[int, int], ...] = ()
    color: Optional[str] = None

    def covers(self, tone: int) -> bool:
        if not self.tone_ranges:
            return True
        return any(low <= tone <= high for low, high in self.tone_ranges)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subbank":
        ranges = tuple(parse_tone_range(r) for r in (data.get("tone_ranges") or []))
        return cls(
            prefix=str(data.get("prefix") or ""),
            suffix=str(data.get("suffix") or ""),
            tone_ranges=ranges,
            color=data.get("color") or None,
        )


@dataclass
class Voicebank:
    name: str
    root: Path
    otos: Dict[str, Oto] = field(default_factory=dict)
    subbanks: List[Subbank] = field(default_factory=list)
    text_file_encoding: str = DEFAULT_TEXT_ENCODING
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "Voicebank":
        root = Path(path)
        if not root.is_dir():
            raise FileNotFoundError(f"Voicebank directory not found: {root}")
        metadata: Dict[str, Any] = {}
        character = root / CHARACTER_YAML
        if character.exists():
            loaded = yaml.safe_load(character.read_text(encoding="utf8"))
            if loaded is not None and not isinstance(loaded, dict):
                raise ValueError(f"Invalid {CHARACTER_YAML} format at {character}.")
            metadata = loaded or {}
        encoding = str(metadata.get("text_file_encoding") or DEFAULT_TEXT_ENCODING)
        subbanks = [Subbank.from_dict(s) for s in (metadata.get("subbanks") or []) if isinstance(s, dict)]
        oto_files = sorted(root.rglob(OTO_FILENAME))
        if not oto_files:
            raise FileNotFoundError(
                f"No {OTO_FILENAME} found under {root}. "
                "An UTAU voicebank needs at least one oto.ini next to its samples."
            )
        otos: Dict[str, Oto] = {}
        for oto_file in oto_files:
            for oto in parse_oto_ini(oto_file, encoding):
                otos.setdefault(oto.alias, oto)
        voicebank = cls(
            name=str(metadata.get("name") or root.name),
            root=root,
            otos=otos,
            subbanks=subbanks,
            text_file_encoding=encoding,
            metadata=metadata,
        )
        logger.info(
            "voicebank_loaded name=%s otos=%s subbanks=%s",
            voicebank.name,
            len(otos),
            len(subbanks),
        )
        return voicebank

    def map_alias(self, alias: str, tone: int, color: Optional[str] = None) -> str:
        """Apply the first subbank covering ``tone`` whose prefixed/suffixed alias exists."""
        for subbank in self.subbanks:
            if color is not None and subbank.color != color:
                continue
            if not subbank.covers(tone):
                continue
            candidate = f"{subbank.prefix}{alias}{subbank.suffix}"
            if candidate in self.otos:
                return candidate
        return alias

    def get_oto(self, alias: str) -> Optional[Oto]:
        return self.otos.get(alias)

    def has_alias(self, alias: str) -> bool:
        return alias in self.otos

    def get_mapped_oto(self, alias: str, tone: int, color: Optional[str] = None) -> Optional[Oto]:
        oto = self.otos.get(self.map_alias(alias, tone, color))
        if oto is None:
            oto = self.otos.get(alias)
        return oto

    def colors(self) -> Sequence[str]:
        return sorted({s.color for s in self.subbanks if s.color})
