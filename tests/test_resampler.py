"""
Tests for resampler argument building, pitch-bend encoding and the executable renderer.
"""

from __future__ import annotations

import os
import stat
import sys
import tempfile
import unittest
from pathlib import Path

import pytest

from src.render.resampler import (
    ExeResampler,
    ResamplerItem,
    decode_pitch_bend,
    encode_pitch_bend,
    tone_to_name,
)


def _item(input_file: Path, **overrides) -> ResamplerItem:
    values = dict(
        phrase_id="job-p0",
        phone_index=0,
        alias="ka",
        input_file=input_file,
        tone=60,
        velocity=100,
        volume=100,
        flags="g-5",
        offset_ms=20.0,
        required_length_ms=550,
        consonant_ms=80.0,
        cutoff_ms=-150.0,
        modulation=0,
        tempo=120.0,
        pitch=[0, 0, 0, 100],
        skip_over_ms=0.0,
        position_ms=0.0,
    )
    values.update(overrides)
    return ResamplerItem(**values)


class PitchBendEncodingTests(unittest.TestCase):
    def test_runs_are_compressed(self) -> None:
        self.assertEqual(encode_pitch_bend([0, 0, 0]), "AA#2#")

    def test_values_are_tenths_of_cents(self) -> None:
        self.assertEqual(encode_pitch_bend([10]), "AB")
        self.assertEqual(encode_pitch_bend([-10]), "//")

    def test_out_of_range_values_are_clamped(self) -> None:
        self.assertEqual(encode_pitch_bend([30000]), "f/")
        self.assertEqual(encode_pitch_bend([-30000]), "gA")

    def test_decode_restores_cents(self) -> None:
        encoded = encode_pitch_bend([0, 0, 0, 120, -500, -500])
        self.assertEqual(decode_pitch_bend(encoded), [0, 0, 0, 12, -50, -50])

    def test_decode_rejects_leading_run_marker(self) -> None:
        with self.assertRaises(ValueError):
            decode_pitch_bend("#3#")


def test_tone_names():
    assert tone_to_name(60) == "C4"
    assert tone_to_name(69) == "A4"
    assert tone_to_name(61) == "C#4"
    assert tone_to_name(23) == "B0"


def test_resampler_args_order():
    item = _item(Path("ka.wav"))
    args = item.resampler_args()
    assert args[:10] == ["C4", "100", "g-5", "20", "550", "80", "-150", "100", "0", "!120"]
    assert decode_pitch_bend(args[10]) == [0, 0, 0, 10]


def test_hash_changes_with_parameters():
    base = _item(Path("ka.wav"))
    assert base.hash_parameters() == _item(Path("ka.wav")).hash_parameters()
    assert base.hash_parameters() != _item(Path("ka.wav"), tone=62).hash_parameters()
    assert base.hash_parameters("a") != base.hash_parameters("b")


@pytest.mark.skipif(sys.platform.startswith("win"), reason="uses a POSIX shell script")
class ExeResamplerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.input_file = self.root / "ka.wav"
        self.input_file.write_bytes(b"RIFF")
        self.calls = self.root / "calls.log"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _script(self, body: str) -> Path:
        path = self.root / "resampler.sh"
        path.write_text("#!/bin/sh\n" + body, encoding="utf8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return path

    def test_renders_once_and_reuses_cached_output(self) -> None:
        script = self._script(f'echo "$@" >> "{self.calls}"\ncp "$1" "$2"\n')
        resampler = ExeResampler(script, self.root / "cache")
        item = _item(self.input_file)
        first = resampler.render(item)
        second = resampler.render(_item(self.input_file))
        self.assertEqual(first, second)
        self.assertTrue(first.exists())
        self.assertEqual(item.output_file, first)
        self.assertEqual(len(self.calls.read_text(encoding="utf8").splitlines()), 1)
        self.assertTrue(first.name.startswith("job-p0-"))

    def test_failing_executable_raises_runtime_error(self) -> None:
        script = self._script('echo "bad input" >&2\nexit 3\n')
        resampler = ExeResampler(script, self.root / "cache")
        with self.assertRaises(RuntimeError) as ctx:
            resampler.render(_item(self.input_file))
        self.assertIn("exit=3", str(ctx.exception))
        self.assertIn("bad input", str(ctx.exception))

    def test_missing_output_is_a_failure(self) -> None:
        resampler = ExeResampler(self._script("exit 0\n"), self.root / "cache")
        with self.assertRaises(RuntimeError):
            resampler.render(_item(self.input_file))

    def test_timeout_raises_runtime_error(self) -> None:
        resampler = ExeResampler(self._script("exec sleep 5\n"), self.root / "cache", timeout_seconds=0.2)
        with self.assertRaises(RuntimeError) as ctx:
            resampler.render(_item(self.input_file))
        self.assertIn("timed out", str(ctx.exception))

    def test_missing_executable_is_not_swallowed(self) -> None:
        resampler = ExeResampler(self.root / "nope", self.root / "cache")
        with self.assertRaises(FileNotFoundError) as ctx:
            resampler.render(_item(self.input_file))
        self.assertIn("RESAMPLER_PATH", str(ctx.exception))
        self.assertFalse(os.path.exists(self.root / "cache"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
