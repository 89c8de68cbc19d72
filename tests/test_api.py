"""
Tests for the public API: score parsing, phonemization, synthesis and audio output.
"""

import json
import threading
import unittest
from dataclasses import replace
from pathlib import Path
from tempfile import TemporaryDirectory

import numpy as np
import soundfile as sf

from src.api import (
    list_variants,
    note_from_dict,
    parse_score,
    phonemize,
    save_audio,
    synthesize,
)
from src.api.synthesize import build_renderer
from src.api.voicebank import clear_voicebank_cache
from src.config import Settings
from src.phonemizer.types import PitchShape
from src.render.resampler import ExeResampler, Renderer


SCORE = {
    "bpm": 125,
    "notes": [
        {"lyric": "a", "position": 480, "duration": 480, "tone": "E4"},
        {
            "lyric": "k a",
            "position": 0,
            "duration": 480,
            "tone": 60,
            "pitch": {"points": [{"x": -20, "y": 0, "shape": "io"}, {"x": 40, "y": 0}]},
            "vibrato": {"length": 50, "period": 180, "depth": 20, "in": 15},
            "phoneme_overrides": [{"index": 0, "offset": -10, "preutterScale": 1.2}],
        },
    ],
}


class ToneRenderer(Renderer):
    name = "tone"

    def __init__(self, out_dir: Path) -> None:
        self.out_dir = out_dir
        self.calls = 0
        self._lock = threading.Lock()

    def render(self, item):
        with self._lock:
            self.calls += 1
        length = int(item.required_length_ms * 44.1)
        samples = 0.2 * np.sin(2.0 * np.pi * 261.63 * np.arange(length) / 44100.0)
        path = self.out_dir / f"{item.phrase_id}-{item.phone_index}.wav"
        sf.write(str(path), samples.astype(np.float32), 44100)
        return path


class TestParseScore(unittest.TestCase):
    """Tests for parse_score API."""

    def test_parse_dict_sorts_notes(self):
        score = parse_score(SCORE)
        self.assertEqual(score["bpm"], 125.0)
        self.assertEqual([n.lyric for n in score["notes"]], ["k a", "a"])
        self.assertEqual(score["notes"][1].tone, 64)
        self.assertEqual(score["notes"][0].bpm, 125.0)

    def test_note_details_are_parsed(self):
        note = parse_score(SCORE)["notes"][0]
        self.assertEqual(len(note.pitch_points), 2)
        self.assertIs(note.pitch_points[0].shape, PitchShape.EASE_IN_OUT)
        self.assertEqual(note.vibrato.fade_in, 15.0)
        self.assertEqual(note.vibrato.period, 180.0)
        self.assertEqual(note.phoneme_attributes[0].offset, -10)
        self.assertEqual(note.phoneme_attributes[0].preutter_scale, 1.2)

    def test_parse_json_and_yaml_files(self):
        with TemporaryDirectory() as tmp:
            json_path = Path(tmp) / "score.json"
            json_path.write_text(json.dumps(SCORE), encoding="utf8")
            yaml_path = Path(tmp) / "score.yaml"
            yaml_path.write_text(
                "bpm: 100\nnotes:\n  - {lyric: la, position: 0, duration: 240, tone: A4}\n",
                encoding="utf8",
            )
            from_json = parse_score(json_path)
            from_yaml = parse_score(str(yaml_path))
        self.assertEqual(len(from_json["notes"]), 2)
        self.assertEqual(from_yaml["bpm"], 100.0)
        self.assertEqual(from_yaml["notes"][0].tone, 69)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            parse_score("/nonexistent/score.json")

    def test_invalid_payloads(self):
        with self.assertRaises(ValueError):
            parse_score({"bpm": 0, "notes": []})
        with self.assertRaises(ValueError):
            note_from_dict({"lyric": "a", "position": 0, "tone": 60})
        with self.assertRaises(ValueError):
            note_from_dict({"lyric": "a", "position": 0, "duration": 0, "tone": 60})
        with self.assertRaises(ValueError):
            note_from_dict({"lyric": "a", "position": 0, "duration": 10, "tone": "H9"})
        with self.assertRaises(ValueError):
            note_from_dict(
                {"lyric": "a", "position": 0, "duration": 10, "tone": 60, "phoneme_overrides": [{"offset": 5}]}
            )

    def test_override_scales_ignore_millisecond_deltas(self):
        note = note_from_dict(
            {
                "lyric": "a",
                "position": 0,
                "duration": 10,
                "tone": 60,
                "phoneme_overrides": [
                    {"index": 0, "preutterDelta": 10, "overlapDelta": -5},
                    {"index": 1, "overlap_scale": 0.5, "preutterScale": 2},
                ],
            }
        )
        first, second = note.phoneme_attributes
        self.assertIsNone(first.preutter_scale)
        self.assertIsNone(first.overlap_scale)
        self.assertEqual(second.preutter_scale, 2.0)
        self.assertEqual(second.overlap_scale, 0.5)

    def test_zero_period_vibrato_parses_as_inactive(self):
        note = note_from_dict(
            {"lyric": "a", "position": 0, "duration": 480, "tone": 60, "vibrato": {"length": 50, "period": 0, "depth": 30}}
        )
        self.assertFalse(note.vibrato.is_active)

    def test_pitch_points_as_tuples(self):
        note = note_from_dict({"lyric": "a", "position": 0, "duration": 10, "tone": 60, "pitch": [[0, 10, "l"]]})
        self.assertEqual(note.pitch_points[0].y, 10.0)
        self.assertIs(note.pitch_points[0].shape, PitchShape.LINEAR)


class TestPhonemize(unittest.TestCase):
    """Tests for phonemize API."""

    def test_groups_and_phonemes(self):
        result = phonemize(parse_score(SCORE)["notes"], variant="phonetic")
        self.assertEqual(result["variant"], "phonetic")
        self.assertEqual([g["lyric"] for g in result["groups"]], ["k a", "a"])
        first = result["groups"][0]
        self.assertIsNone(first["error"])
        self.assertEqual([p["alias"] for p in first["phonemes"]], ["k", "a"])
        self.assertEqual(set(first["phonemes"][0]), {"alias", "position", "duration"})
        json.dumps(result)

    def test_unknown_variant(self):
        with self.assertRaises(ValueError):
            phonemize(parse_score(SCORE)["notes"], variant="nope")

    def test_variants_are_listed(self):
        self.assertIn("phonetic", [v["id"] for v in list_variants()])


class TestSynthesize(unittest.TestCase):
    """End-to-end synthesis with a stand-in renderer."""

    def setUp(self):
        clear_voicebank_cache()
        self._tmp = TemporaryDirectory()
        root = Path(self._tmp.name)
        self.bank = root / "voicebanks" / "tester"
        self.bank.mkdir(parents=True)
        (self.bank / "oto.ini").write_text(
            "k.wav=k,10,40,-100,50,10\na.wav=a,20,60,-300,80,30\n",
            encoding="utf8",
        )
        self.out_dir = root / "renders"
        self.out_dir.mkdir()
        self.settings = replace(
            Settings.from_env(),
            voicebanks_dir=root / "voicebanks",
            cache_dir=self.out_dir,
            resampler_path=None,
        )

    def tearDown(self):
        clear_voicebank_cache()
        self._tmp.cleanup()

    def test_synthesize_mixes_phrases(self):
        renderer = ToneRenderer(self.out_dir)
        result = synthesize(SCORE, "tester", variant="phonetic", renderer=renderer, settings=self.settings)
        self.assertEqual(result["phrases"], 1)
        self.assertFalse(result["cancelled"])
        self.assertEqual(result["sample_rate"], self.settings.sample_rate)
        self.assertGreater(result["duration_seconds"], 0.9)
        self.assertGreater(float(np.abs(result["waveform"]).max()), 0.0)
        self.assertEqual(renderer.calls, 3)

    def test_cancelled_synthesis_is_empty(self):
        event = threading.Event()
        event.set()
        renderer = ToneRenderer(self.out_dir)
        result = synthesize(
            SCORE,
            self.bank,
            variant="phonetic",
            renderer=renderer,
            settings=self.settings,
            cancel_event=event,
        )
        self.assertTrue(result["cancelled"])
        self.assertEqual(result["phrases"], 0)
        self.assertEqual(len(result["waveform"]), 0)
        self.assertEqual(renderer.calls, 0)

    def test_default_renderer_requires_resampler_path(self):
        with self.assertRaises(ValueError):
            synthesize(SCORE, "tester", variant="phonetic", settings=self.settings)
        renderer = build_renderer(replace(self.settings, resampler_path=Path("/opt/resampler")))
        self.assertIsInstance(renderer, ExeResampler)


class TestSaveAudio(unittest.TestCase):
    """Tests for save_audio API."""

    def test_save_wav_normalizes_peak(self):
        with TemporaryDirectory() as tmp:
            result = save_audio(np.array([0.0, 2.0, -1.0]), Path(tmp) / "out.bin", sample_rate=8000)
            data, rate = sf.read(result["path"])
        self.assertTrue(result["path"].endswith("out.wav"))
        self.assertEqual(rate, 8000)
        self.assertEqual(result["peak"], 2.0)
        self.assertAlmostEqual(float(np.max(data)), 1.0, places=3)
        self.assertAlmostEqual(result["duration_seconds"], 3 / 8000)

    def test_save_flac(self):
        with TemporaryDirectory() as tmp:
            result = save_audio([0.0, 0.5, 0.25], Path(tmp) / "nested" / "out", format="flac")
            self.assertTrue(Path(result["path"]).exists())
        self.assertTrue(result["path"].endswith(".flac"))

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            save_audio([0.0], "out.mp3", format="mp3")


if __name__ == "__main__":
    unittest.main(verbosity=2)
