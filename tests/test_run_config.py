import argparse
import tempfile
import unittest
from pathlib import Path

from detector_runner.cli import build_arg_parser
from detector_runner.errors import ConfigError
from detector_runner.run_config import apply_run_config, collect_cli_dests, load_run_config


class TestRunConfig(unittest.TestCase):
    def setUp(self) -> None:
        self.parser = build_arg_parser()
        self.argv = ["demo", "cfg/coco.data", "model.json", "--fps=15", "-s", "1"]
        self.args = self.parser.parse_args(self.argv)

    def test_collect_cli_dests(self) -> None:
        self.assertEqual(collect_cli_dests(self.parser, self.argv), {"fps", "frame_skip"})

    def test_cli_values_are_kept(self) -> None:
        payload = {"fps": 30, "frame_skip": 4, "width": 640.0, "nms_iou_threshold": 0}
        apply_run_config(args=self.args, payload=payload, cli_dests=collect_cli_dests(self.parser, self.argv))
        self.assertEqual((self.args.fps, self.args.frame_skip), (15.0, 1))
        self.assertEqual(self.args.width, 640)
        self.assertIsInstance(self.args.width, int)
        self.assertEqual(self.args.nms_iou_threshold, 0.0)

    def test_type_errors(self) -> None:
        for payload in ({"width": 1.5}, {"show": "yes"}, {"threshold": True}, {"prefix": ""}, {"config": "x.json"}):
            with self.subTest(payload=payload):
                with self.assertRaises(ConfigError):
                    apply_run_config(args=argparse.Namespace(), payload=payload, cli_dests=set())

    def test_load_run_config(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "run.json"
        with self.assertRaises(ConfigError):
            load_run_config(path)
        path.write_text("[1, 2]", encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_run_config(path)
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_run_config(path)
        path.write_text('{"avg_frames": 5}', encoding="utf-8")
        self.assertEqual(load_run_config(path), {"avg_frames": 5})


if __name__ == "__main__":
    unittest.main()
