from __future__ import annotations

"""UTAU ``oto.ini`` entries: per-alias sample timing in milliseconds."""

from dataclasses import dataclass
from pathlib import Path
from typing import List

from src.logging_utils import get_logger

logger = get_logger(__name__)

OTO_FILENAME = "oto.ini"


@dataclass(frozen=True)
class Oto:
    alias: str
    file: Path
    offset: float = 0.0
    consonant: float = 0.0
    cutoff: float = 0.0
    preutter: float = 0.0
    overlap: float = 0.0

    def to_dict(self) -> dict:
        return {
            "alias": self.alias,
            "file": str(self.file),
            "offset": self.offset,
            "consonant": self.consonant,
            "cutoff": self.cutoff,
            "preutter": self.preutter,
            "overlap": self.overlap,
        }


def _number(value: str) -> float:
    value = value.strip()
    if not value:
        return 0.0
    return float(value)


def parse_oto_line(line: str, base_dir: Path) -> Oto:
    """Parse ``file.wav=alias,offset,consonant,cutoff,preutter,overlap``.

    An empty alias defaults to the file name without extension. Missing trailing
    numbers read as 0.
    """
    if "=" not in line:
        raise ValueError(f"Invalid oto line (missing '='): {line!r}")
    filename, rest = line.split("=", 1)
    parts = rest.split(",")
    alias = parts[0].strip() or Path(filename.strip()).stem
    numbers = [_number(p) for p in parts[1:6]]
    numbers.extend([0.0] * (5 - len(numbers)))
    offset, consonant, cutoff, preutter, overlap = numbers
    return Oto(
        alias=alias,
        file=base_dir / filename.strip(),
        offset=offset,
        consonant=consonant,
        cutoff=cutoff,
        preutter=preutter,
        overlap=overlap,
    )


def parse_oto_ini(path: Path, encoding: str = "shift_jis") -> List[Oto]:
    """Read every valid entry of an oto.ini; malformed lines are logged and skipped."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"oto.ini not found at {path}")
    text = path.read_bytes().decode(encoding, errors="replace")
    otos: List[Oto] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        try:
            otos.append(parse_oto_line(line, path.parent))
        except ValueError as exc:
            logger.debug("oto_line_skipped path=%s line=%s error=%s", path, lineno, exc)
    return otos
