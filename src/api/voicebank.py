from __future__ import annotations

"""Voicebank discovery, loading and caching APIs."""

import logging
from pathlib import Path
import threading
from typing import Any, Dict, List, Optional, Union

import yaml

from src.config import Settings
from src.logging_utils import get_logger, summarize_payload
from src.voicebank.oto import OTO_FILENAME
from src.voicebank.voicebank import CHARACTER_YAML, Voicebank

logger = get_logger(__name__)

_cache_lock = threading.Lock()
_voicebank_cache: Dict[Path, Voicebank] = {}


def _voicebanks_root(settings: Optional[Settings] = None) -> Path:
    return (settings or Settings.from_env()).voicebanks_dir


def _is_voicebank_dir(path: Path) -> bool:
    return path.is_dir() and any(path.rglob(OTO_FILENAME))


def resolve_voicebank_path(voicebank: Union[str, Path], *, settings: Optional[Settings] = None) -> Path:
    """Resolve a voicebank path or ID (directory name under the voicebanks root)."""
    if not str(voicebank):
        raise ValueError("voicebank is required.")
    path = Path(voicebank)
    if path.is_absolute() or "/" in str(voicebank) or "\\" in str(voicebank):
        if not path.is_dir():
            raise FileNotFoundError(f"Voicebank directory not found: {voicebank}")
        return path.resolve()
    root = _voicebanks_root(settings).resolve()
    candidate = (root / str(voicebank)).resolve()
    if root not in candidate.parents:
        raise ValueError("voicebank ID resolves outside voicebank root.")
    if not candidate.is_dir():
        raise FileNotFoundError(f"Voicebank not found: {voicebank}")
    return candidate


def load_voicebank(
    voicebank: Union[str, Path],
    *,
    settings: Optional[Settings] = None,
    use_cache: bool = True,
) -> Voicebank:
    """Load a voicebank once per process; later calls return the cached instance."""
    path = resolve_voicebank_path(voicebank, settings=settings)
    if use_cache:
        with _cache_lock:
            cached = _voicebank_cache.get(path)
        if cached is not None:
            logger.debug("voicebank_cache_hit path=%s", path)
            return cached
    loaded = Voicebank.load(path)
    if use_cache:
        with _cache_lock:
            loaded = _voicebank_cache.setdefault(path, loaded)
    return loaded


def clear_voicebank_cache() -> None:
    with _cache_lock:
        _voicebank_cache.clear()


def _character_name(path: Path) -> str:
    char_file = path / CHARACTER_YAML
    if not char_file.exists():
        return path.name
    try:
        data = yaml.safe_load(char_file.read_text(encoding="utf8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        logger.warning("character_yaml_unreadable path=%s error=%s", char_file, exc)
        return path.name
    if isinstance(data, dict) and data.get("name"):
        return str(data["name"])
    return path.name


def list_voicebanks(search_path: Optional[Union[str, Path]] = None) -> List[Dict[str, Any]]:
    """
    List available voicebanks.

    Args:
        search_path: Directory to search (default: VOICEBANKS_DIR)

    Returns:
        List of dicts with ``id`` (directory name), ``name`` (from character.yaml)
        and ``path``.
    """
    root = Path(search_path) if search_path is not None else _voicebanks_root()
    if not root.exists():
        return []
    voicebanks = []
    for item in sorted(root.iterdir()):
        if not _is_voicebank_dir(item):
            continue
        voicebanks.append(
            {
                "id": item.name,
                "name": _character_name(item),
                "path": str(item.resolve()),
            }
        )
    return voicebanks


def get_voicebank_info(voicebank: Union[str, Path], *, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Get detailed information about a voicebank.

    Returns:
        Dict with name, path, alias count, subbank prefixes/suffixes/colors and
        the oto text encoding.
    """
    bank = load_voicebank(voicebank, settings=settings)
    info = {
        "name": bank.name,
        "path": str(bank.root.resolve()),
        "alias_count": len(bank.otos),
        "subbanks": [
            {
                "prefix": sub.prefix,
                "suffix": sub.suffix,
                "color": sub.color,
                "tone_ranges": [list(r) for r in sub.tone_ranges],
            }
            for sub in bank.subbanks
        ],
        "colors": list(bank.colors()),
        "text_file_encoding": bank.text_file_encoding,
    }
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("get_voicebank_info output=%s", summarize_payload(info))
    return info
