from __future__ import annotations

"""Command line entry: render a note score with a voicebank to an audio file."""

import argparse
from dataclasses import replace
import json
import logging
import sys
from typing import List, Optional

from src.api.audio import SUPPORTED_FORMATS, save_audio
from src.api.phonemize import phonemize
from src.api.score import parse_score
from src.api.synthesize import synthesize
from src.api.voicebank import list_voicebanks, load_voicebank
from src.config import Settings
from src.logging_utils import configure_logging, get_logger
from src.phonemizer.registry import list_variants

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Concatenative singing voice renderer.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Render a score to audio.")
    render.add_argument("score", help="Score file (.json or .yaml).")
    render.add_argument("--voicebank", required=True, help="Voicebank path or ID.")
    render.add_argument("--variant", default="en-arpasing", help="Phonemizer variant id.")
    render.add_argument("--output", default="output.wav", help="Output audio path.")
    render.add_argument("--format", default="wav", choices=sorted(SUPPORTED_FORMATS))
    render.add_argument("--workers", type=int, default=None, help="Parallel phrase renders.")

    phonemes = sub.add_parser("phonemize", help="Print timed phonemes as JSON.")
    phonemes.add_argument("score", help="Score file (.json or .yaml).")
    phonemes.add_argument("--variant", default="en-arpasing", help="Phonemizer variant id.")
    phonemes.add_argument("--voicebank", default=None, help="Voicebank path or ID for alias checks.")

    sub.add_parser("voicebanks", help="List installed voicebanks.")
    sub.add_parser("variants", help="List phonemizer variants.")
    return parser


def _render(args: argparse.Namespace, settings: Settings) -> int:
    if args.workers is not None:
        if args.workers < 1:
            raise ValueError("--workers must be at least 1.")
        settings = replace(settings, render_workers=args.workers)
    result = synthesize(args.score, args.voicebank, variant=args.variant, settings=settings)
    saved = save_audio(
        result["waveform"],
        args.output,
        sample_rate=result["sample_rate"],
        format=args.format,
    )
    logger.info(
        "render_cli_done output=%s duration_seconds=%.2f phrases=%s",
        saved["path"],
        saved["duration_seconds"],
        result["phrases"],
    )
    print(saved["path"])
    return 0


def _phonemize(args: argparse.Namespace, settings: Settings) -> int:
    notes = parse_score(args.score)["notes"]
    bank = load_voicebank(args.voicebank, settings=settings) if args.voicebank else None
    output = phonemize(notes, variant=args.variant, voicebank=bank, settings=settings)
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    settings = Settings.from_env()
    try:
        if args.command == "render":
            return _render(args, settings)
        if args.command == "phonemize":
            return _phonemize(args, settings)
        if args.command == "voicebanks":
            print(json.dumps(list_voicebanks(settings.voicebanks_dir), indent=2, ensure_ascii=False))
            return 0
        print(json.dumps(list_variants(), indent=2))
        return 0
    except (FileNotFoundError, ValueError) as exc:
        logger.error("render_cli_failed command=%s error=%s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
