import contextlib
import io
import logging
import tempfile
import threading
import unittest
from pathlib import Path
from typing import List, Optional

import numpy as np

from detect_kit.runtime import NetworkHandle
from detect_kit.types import RawOutput
from detector_runner.config import Options
from detector_runner.errors import DetectorError, InferenceError, InputError, ModelLoadError, OutputError, UsageError
from detector_runner.ingest import CaptureInfo
from detector_runner.pipeline import Collaborators, Mode, OutputAverager, PipelineState, run

# [x, y, w, h, obj, person, dog]: person scores 0.72
CELLS = np.array(
    [
        [0.5, 0.5, 0.2, 0.2, 0.9, 0.8, 0.1],
        [0.2, 0.2, 0.1, 0.1, 0.1, 0.5, 0.5],
    ],
    dtype=np.float32,
)


def _frame(width: int = 48, height: int = 32) -> np.ndarray:
    return np.full((height, width, 3), 100, dtype=np.uint8)


def _network(num_classes: int = 2, fail: bool = False) -> NetworkHandle:
    def infer(blob: np.ndarray) -> np.ndarray:
        if fail:
            raise RuntimeError("shape mismatch")
        assert blob.shape == (1, 3, 64, 64)
        return CELLS[None, ...]

    return NetworkHandle(infer, width=64, height=64, channels=3, num_classes=num_classes, backend_name="fake")


class FakeSource:
    def __init__(self, frames, fps: Optional[float] = None):
        self.frames = list(frames)
        self.fps = fps
        self.closed = False

    @property
    def remaining(self) -> int:
        return len(self.frames)

    def read(self):
        return self.frames.pop(0) if self.frames else None

    def info(self) -> CaptureInfo:
        return CaptureInfo(fps=self.fps, width=48, height=32)

    def close(self) -> None:
        self.closed = True


class FakeDisplay:
    def __init__(self, quit_after: Optional[int] = None):
        self.quit_after = quit_after
        self.shown = 0
        self.closed = False

    def show(self, image_bgr, wait_ms: int = 1) -> bool:
        self.shown += 1
        return self.quit_after is None or self.shown < self.quit_after

    def close(self) -> None:
        self.closed = True


class FakeSink:
    def __init__(self, path, fps=None):
        self.path = Path(path)
        self.fps = fps
        self.frames = 0
        self.closed = False

    def write(self, image_bgr) -> None:
        self.frames += 1

    def close(self) -> None:
        self.closed = True


class PipelineCase(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name)
        (root / "names.list").write_text("person\ndog\n", encoding="utf-8")
        self.data_cfg = root / "voc.data"
        self.data_cfg.write_text("classes = 2\nnames = names.list\n", encoding="utf-8")
        self.model_cfg = root / "model.json"

        self.written: List[tuple] = []
        self.load_calls: List[tuple] = []
        self.network = _network()
        self.source = FakeSource([_frame() for _ in range(5)])
        self.display = FakeDisplay()
        self.sinks: List[FakeSink] = []
        self.logger = logging.getLogger("tests.pipeline")

    def _load_network(self, model_cfg, weights=None):
        self.load_calls.append((model_cfg, weights))
        return self.network

    def _write_image(self, image_bgr, path):
        self.written.append((image_bgr.shape, str(path)))
        return Path(path)

    def _make_sink(self, path, fps=None):
        sink = FakeSink(path, fps)
        self.sinks.append(sink)
        return sink

    def collaborators(self, **overrides) -> Collaborators:
        kwargs = dict(
            load_network=self._load_network,
            read_image=lambda path: _frame(),
            write_image=self._write_image,
            open_capture=lambda **kw: self.source,
            make_display=lambda *a, **kw: self.display,
            make_video_sink=self._make_sink,
        )
        kwargs.update(overrides)
        return Collaborators(**kwargs)

    def run_mode(self, mode, input_path=None, options=None, **kwargs):
        return run(
            mode,
            self.data_cfg,
            self.model_cfg,
            None,
            input_path,
            options or Options(avg_frames=1),
            collaborators=kwargs.pop("collaborators", None) or self.collaborators(),
            logger=self.logger,
            **kwargs,
        )


class TestTestMode(PipelineCase):
    def test_single_image(self) -> None:
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            result = self.run_mode("test", "img.jpg")

        self.assertEqual(result.state, PipelineState.TERMINATED)
        self.assertTrue(result.ok)
        self.assertEqual(result.detections.count, 1)
        self.assertEqual(result.detections[0].best_class(), 0)
        self.assertEqual(self.written, [((32, 48, 3), "predictions")])
        self.assertEqual(result.output_path, Path("predictions"))
        self.assertIn("predict", result.timings)

        lines = out.getvalue().splitlines()
        self.assertTrue(lines[0].startswith("img.jpg: Predicted in "))
        self.assertTrue(lines[0].endswith(" seconds."))
        self.assertEqual(lines[1:], ["person: 72%"])

    def test_output_path_option(self) -> None:
        with contextlib.redirect_stdout(io.StringIO()):
            self.run_mode(Mode.TEST, "img.jpg", Options(output_path="out/result"))
        self.assertEqual(self.written[0][1], "out/result")

    def test_output_write_failure(self) -> None:
        def full_disk(image_bgr, path):
            raise OSError("disk full")

        with contextlib.redirect_stdout(io.StringIO()), self.assertLogs(self.logger, level="ERROR"):
            with self.assertRaises(OutputError):
                self.run_mode("test", "img.jpg", collaborators=self.collaborators(write_image=full_disk))

    def test_missing_input_is_reported(self) -> None:
        with self.assertLogs(self.logger, level="ERROR") as logs:
            result = self.run_mode("test", None)
        self.assertIn("image file not defined", logs.output[0])
        self.assertFalse(result.ok)
        self.assertEqual(result.state, PipelineState.TERMINATED)
        self.assertEqual(self.written, [])

    def test_unreadable_image(self) -> None:
        def missing(path):
            raise FileNotFoundError(path)

        with self.assertLogs(self.logger, level="ERROR"):
            with self.assertRaises(InputError):
                self.run_mode("test", "nope.jpg", collaborators=self.collaborators(read_image=missing))

    def test_inference_failure_is_fatal(self) -> None:
        self.network = _network(fail=True)
        with self.assertLogs(self.logger, level="ERROR"):
            with self.assertRaises(InferenceError):
                self.run_mode("test", "img.jpg")


class TestLoading(PipelineCase):
    def test_unknown_mode_loads_nothing(self) -> None:
        with self.assertRaises(UsageError):
            self.run_mode("train", "img.jpg")
        self.assertEqual(self.load_calls, [])

    def test_model_load_failure(self) -> None:
        def broken(model_cfg, weights=None):
            raise OSError("no such weights")

        with self.assertLogs(self.logger, level="ERROR"):
            with self.assertRaises(ModelLoadError):
                self.run_mode("test", "img.jpg", collaborators=self.collaborators(load_network=broken))

    def test_class_count_mismatch(self) -> None:
        self.network = _network(num_classes=3)
        with self.assertLogs(self.logger, level="ERROR"):
            with self.assertRaises(ModelLoadError):
                self.run_mode("test", "img.jpg")


class TestDemoMode(PipelineCase):
    def test_frame_skip_prefix_and_sink(self) -> None:
        opts = Options(avg_frames=1, frame_skip=1, prefix="frames/demo", output_path="demo.mp4")
        result = self.run_mode("demo", "clip.mp4", opts)

        self.assertEqual(result.frames_read, 5)
        self.assertEqual(result.frames_processed, 3)
        self.assertEqual(
            [path for _, path in self.written],
            ["frames/demo_00000000.jpg", "frames/demo_00000001.jpg", "frames/demo_00000002.jpg"],
        )
        self.assertEqual(len(self.sinks), 1)
        self.assertEqual(self.sinks[0].frames, 3)
        self.assertTrue(self.sinks[0].closed)
        self.assertEqual(result.output_path, Path("demo.mp4"))
        self.assertTrue(self.source.closed)
        self.assertEqual(result.state, PipelineState.TERMINATED)

    def test_bad_frames_are_skipped(self) -> None:
        self.source = FakeSource([_frame(), np.zeros((10, 10), dtype=np.uint8), _frame()])
        with self.assertLogs(self.logger, level="WARNING"):
            result = self.run_mode("demo")
        self.assertEqual(result.frames_read, 3)
        self.assertEqual(result.frames_processed, 2)
        self.assertEqual(result.frames_failed, 1)

    def test_inference_failures_are_skipped(self) -> None:
        self.network = _network(fail=True)
        with self.assertLogs(self.logger, level="WARNING"):
            result = self.run_mode("demo")
        self.assertEqual(result.frames_failed, 5)
        self.assertFalse(result.ok)
        self.assertTrue(self.source.closed)

    def test_quit_key_cancels(self) -> None:
        self.display = FakeDisplay(quit_after=1)
        result = self.run_mode("demo", options=Options(avg_frames=1, show=True))
        self.assertEqual(result.frames_processed, 1)
        self.assertEqual(result.frames_read, 1)
        # no frame is pulled from the camera after the quit key
        self.assertEqual(self.source.remaining, 4)
        self.assertTrue(self.display.closed)

    def test_cancel_event(self) -> None:
        cancel = threading.Event()
        cancel.set()
        result = self.run_mode("demo", cancel=cancel)
        self.assertEqual(result.frames_processed, 0)
        self.assertEqual(result.frames_read, 0)
        self.assertEqual(self.source.remaining, 5)
        self.assertTrue(self.source.closed)

    def test_max_frames(self) -> None:
        result = self.run_mode("demo", options=Options(avg_frames=1, max_frames=2))
        self.assertEqual(result.frames_processed, 2)

    def test_failed_frame_write_is_skipped(self) -> None:
        calls = []

        def flaky_write(image_bgr, path):
            calls.append(path)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return Path(path)

        opts = Options(avg_frames=1, prefix="frames/demo")
        with self.assertLogs(self.logger, level="WARNING") as logs:
            result = self.run_mode("demo", options=opts, collaborators=self.collaborators(write_image=flaky_write))
        self.assertEqual(result.frames_read, 5)
        self.assertEqual(result.frames_processed, 4)
        self.assertEqual(result.frames_failed, 1)
        self.assertTrue(any("disk full" in line for line in logs.output))
        self.assertEqual(result.state, PipelineState.TERMINATED)

    def test_broken_video_writer_stops_the_demo(self) -> None:
        class BrokenSink(FakeSink):
            def write(self, image_bgr) -> None:
                raise RuntimeError("Failed to open video writer")

        with self.assertLogs(self.logger, level="ERROR"):
            with self.assertRaises(DetectorError) as ctx:
                self.run_mode(
                    "demo",
                    options=Options(avg_frames=1, output_path="demo.mp4"),
                    collaborators=self.collaborators(make_video_sink=BrokenSink),
                )
        self.assertEqual(ctx.exception.exit_code, 1)
        self.assertTrue(self.source.closed)

    def test_sink_takes_capture_fps(self) -> None:
        self.source = FakeSource([_frame()], fps=25.0)
        self.run_mode("demo", options=Options(avg_frames=1, output_path="demo.mp4"))
        self.assertEqual(self.sinks[0].fps, 25.0)

        self.source = FakeSource([_frame()], fps=25.0)
        self.run_mode("demo", options=Options(avg_frames=1, output_path="demo.mp4", fps=10.0))
        self.assertEqual(self.sinks[1].fps, 10.0)


class TestOutputAverager(unittest.TestCase):
    def test_running_mean(self) -> None:
        avg = OutputAverager(2)
        a = RawOutput(np.zeros((2, 7), dtype=np.float32))
        b = RawOutput(np.ones((2, 7), dtype=np.float32))
        c = RawOutput(np.full((2, 7), 3.0, dtype=np.float32))
        self.assertTrue(np.allclose(avg(a).cells, 0.0))
        self.assertTrue(np.allclose(avg(b).cells, 0.5))
        self.assertTrue(np.allclose(avg(c).cells, 2.0))

    def test_shape_change_restarts_window(self) -> None:
        avg = OutputAverager(3)
        avg(RawOutput(np.ones((2, 7), dtype=np.float32)))
        out = avg(RawOutput(np.full((3, 7), 4.0, dtype=np.float32)))
        self.assertTrue(np.allclose(out.cells, 4.0))

    def test_size_one_is_passthrough(self) -> None:
        raw = RawOutput(np.ones((1, 7), dtype=np.float32))
        self.assertIs(OutputAverager(1)(raw), raw)

    def test_reset(self) -> None:
        avg = OutputAverager(3)
        avg(RawOutput(np.ones((2, 7), dtype=np.float32)))
        avg.reset()
        out = avg(RawOutput(np.full((2, 7), 5.0, dtype=np.float32)))
        self.assertTrue(np.allclose(out.cells, 5.0))


if __name__ == "__main__":
    unittest.main()
