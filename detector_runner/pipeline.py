"""
Mode-dispatch orchestrator: config -> model -> frames -> detections -> output.

`run()` is the entry point. Test mode processes one image and writes the
annotated result; demo mode loops over a capture source until it is exhausted
or cancelled. Collaborators (model loader, codec, capture, display) are
injected so the loop can be driven without a camera or a real model.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, Dict, Iterable, List, Optional, Protocol, Union

import numpy as np
from tqdm import tqdm

from detect_kit.imageio import read_image, write_image
from detect_kit.letterbox import LetterboxGeometry, letterbox_with_geometry
from detect_kit.nms import nms
from detect_kit.postprocess import decode
from detect_kit.runtime import NetworkHandle, load_network
from detect_kit.types import DetectionSet, Image, RawOutput
from detect_kit.visualize import draw_detections

from .config import Config, Options, load_config
from .display import Display, VideoSink
from .errors import DetectorError, InferenceError, InputError, ModelLoadError, OutputError, UsageError
from .ingest import CaptureInfo, open_capture

PathLike = Union[str, Path]

LOGGER = logging.getLogger(__name__)


class Mode(Enum):
    TEST = "test"
    DEMO = "demo"

    @classmethod
    def parse(cls, selector: Union[str, "Mode"]) -> "Mode":
        if isinstance(selector, Mode):
            return selector
        for mode in cls:
            if mode.value == str(selector).strip().lower():
                return mode
        raise UsageError(f"Not an option under detector: {selector!r} (expected 'test' or 'demo')")


class PipelineState(Enum):
    IDLE = "idle"
    CONFIG_LOADED = "config_loaded"
    MODEL_LOADED = "model_loaded"
    FRAME_ACQUIRED = "frame_acquired"
    INFERRED = "inferred"
    DECODED = "decoded"
    SUPPRESSED = "suppressed"
    RENDERED = "rendered"
    TERMINATED = "terminated"


class FrameSource(Protocol):
    def read(self) -> Optional[np.ndarray]: ...

    def info(self) -> CaptureInfo: ...

    def close(self) -> None: ...


@dataclass
class Collaborators:
    load_network: Callable[[PathLike, Optional[PathLike]], NetworkHandle] = load_network
    read_image: Callable[[PathLike], np.ndarray] = read_image
    write_image: Callable[[np.ndarray, PathLike], Path] = write_image
    open_capture: Callable[..., FrameSource] = open_capture
    make_display: Callable[..., Display] = Display
    make_video_sink: Callable[..., VideoSink] = VideoSink


@dataclass
class RunResult:
    mode: Mode
    state: PipelineState
    frames_read: int = 0
    frames_processed: int = 0
    frames_failed: int = 0
    detections: DetectionSet = field(default_factory=DetectionSet)
    output_path: Optional[Path] = None
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.frames_processed > 0


class OutputAverager:
    """
    Running mean of the last `size` raw outputs, to steady boxes on live video.

    The window restarts whenever the output shape changes.
    """

    def __init__(self, size: int):
        self._window: Deque[np.ndarray] = deque(maxlen=max(1, size))

    def __call__(self, raw: RawOutput) -> RawOutput:
        if self._window.maxlen == 1:
            return raw
        if self._window and self._window[-1].shape != raw.cells.shape:
            self._window.clear()
        self._window.append(raw.cells)
        return RawOutput(cells=np.mean(np.stack(self._window), axis=0).astype(np.float32))

    def reset(self) -> None:
        self._window.clear()


class DetectionPipeline:
    """
    One frame through letterbox -> predict -> decode -> NMS, plus rendering.
    """

    def __init__(self, network: NetworkHandle, config: Config, *, max_detections: Optional[int] = None):
        self.network = network
        self.config = config
        self.max_detections = max_detections

    def prepare(self, image: Image):
        return letterbox_with_geometry(image, self.network.width, self.network.height)

    def infer(self, padded: Image) -> RawOutput:
        try:
            return self.network.predict(padded)
        except (ValueError, RuntimeError) as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc

    def decode(self, raw: RawOutput, geometry: LetterboxGeometry) -> DetectionSet:
        cfg = self.config
        return decode(
            raw,
            cfg.threshold,
            cfg.hier_threshold,
            self.network.num_classes,
            geometry=geometry,
            hierarchy=cfg.hierarchy,
            max_detections=self.max_detections,
        )

    def suppress(self, detections: DetectionSet) -> DetectionSet:
        return nms(detections, self.network.num_classes, self.config.nms_iou_threshold)

    def detect(self, image: Image) -> DetectionSet:
        padded, geometry = self.prepare(image)
        with padded:
            raw = self.infer(padded)
        return self.suppress(self.decode(raw, geometry))

    def render(self, image_bgr: np.ndarray, detections: Iterable) -> np.ndarray:
        return draw_detections(
            image_bgr,
            detections,
            class_names=self.config.class_names,
            threshold=self.config.threshold,
        )

    def describe(self, detections: Iterable) -> List[str]:
        lines: List[str] = []
        names = self.config.class_names
        for det in detections:
            for k in det.classes_above(self.config.threshold):
                name = names[k] if k < len(names) else str(k)
                lines.append(f"{name}: {det.class_probs[k] * 100:.0f}%")
        return lines


class DetectorRunner:
    def __init__(
        self,
        mode: Mode,
        config_path: PathLike,
        model_config_path: PathLike,
        weights_path: Optional[PathLike] = None,
        input_path: Optional[PathLike] = None,
        options: Options = Options(),
        *,
        collaborators: Optional[Collaborators] = None,
        logger: Optional[logging.Logger] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.mode = mode
        self.config_path = Path(config_path)
        self.model_config_path = Path(model_config_path)
        self.weights_path = weights_path
        self.input_path = input_path
        self.options = options
        self.collaborators = collaborators or Collaborators()
        self.log = logger or LOGGER
        self.cancel = cancel or threading.Event()

        self.state = PipelineState.IDLE
        self.config: Optional[Config] = None
        self.pipeline: Optional[DetectionPipeline] = None
        self.result = RunResult(mode=mode, state=self.state)

    def _transition(self, state: PipelineState) -> None:
        self.log.debug("%s -> %s", self.state.value, state.value)
        self.state = state
        self.result.state = state

    def run(self) -> RunResult:
        try:
            self._load_config()
            self._load_model()
            if self.mode is Mode.TEST:
                self._run_test()
            elif self.mode is Mode.DEMO:
                self._run_demo()
            else:  # pragma: no cover
                raise UsageError(f"Unhandled mode: {self.mode}")
        finally:
            self._transition(PipelineState.TERMINATED)
        return self.result

    def _load_config(self) -> None:
        t0 = time.perf_counter()
        self.config = load_config(self.config_path, self.options)
        self._transition(PipelineState.CONFIG_LOADED)
        self.log.debug("Config loaded: %d classes (%.3fs)", self.config.num_classes, time.perf_counter() - t0)

    def _load_model(self) -> None:
        t0 = time.perf_counter()
        try:
            network = self.collaborators.load_network(self.model_config_path, self.weights_path)
        except (OSError, ValueError, ImportError, RuntimeError) as exc:
            raise ModelLoadError(f"Could not load network from {self.model_config_path}: {exc}") from exc

        assert self.config is not None
        if network.num_classes != self.config.num_classes:
            raise ModelLoadError(
                f"Network predicts {network.num_classes} classes but the label list has {self.config.num_classes}"
            )
        self.pipeline = DetectionPipeline(network, self.config, max_detections=self.options.max_detections)
        self._transition(PipelineState.MODEL_LOADED)
        self.log.debug("Network loaded: %r (%.3fs)", network, time.perf_counter() - t0)

    def _process_frame(self, image: Image, averager: Optional[OutputAverager] = None) -> DetectionSet:
        assert self.pipeline is not None
        timings: Dict[str, float] = {}

        t0 = time.perf_counter()
        padded, geometry = self.pipeline.prepare(image)
        with padded:
            raw = self.pipeline.infer(padded)
        if averager is not None:
            raw = averager(raw)
        timings["predict"] = time.perf_counter() - t0
        self._transition(PipelineState.INFERRED)

        t1 = time.perf_counter()
        detections = self.pipeline.decode(raw, geometry)
        self._transition(PipelineState.DECODED)
        detections = self.pipeline.suppress(detections)
        self._transition(PipelineState.SUPPRESSED)
        timings["postprocess"] = time.perf_counter() - t1

        self.result.timings = timings
        self.log.debug("Frame: %d detections, predict %.3fs, postprocess %.3fs", detections.count, timings["predict"], timings["postprocess"])
        return detections

    def _acquire(self, frame: np.ndarray) -> Image:
        try:
            image = Image.from_bgr(frame)
        except (TypeError, ValueError) as exc:
            raise InputError(f"Unusable frame: {exc}") from exc
        self._transition(PipelineState.FRAME_ACQUIRED)
        return image

    def _run_test(self) -> None:
        assert self.pipeline is not None and self.config is not None
        if not self.input_path:
            self.log.error("image file not defined")
            return

        try:
            frame = self.collaborators.read_image(self.input_path)
        except OSError as exc:
            raise InputError(f"Could not load image {self.input_path}: {exc}") from exc
        self.result.frames_read = 1

        with self._acquire(frame) as image:
            detections = self._process_frame(image)
        print(f"{self.input_path}: Predicted in {self.result.timings['predict']:f} seconds.")
        for line in self.pipeline.describe(detections):
            print(line)

        t0 = time.perf_counter()
        vis = self.pipeline.render(frame, detections)
        try:
            out = self.collaborators.write_image(vis, self.config.resolved_output)
        except (OSError, RuntimeError) as exc:
            raise OutputError(f"Could not write {self.config.resolved_output}: {exc}") from exc
        self._transition(PipelineState.RENDERED)
        self.log.info("Wrote %s (%.3fs)", out, time.perf_counter() - t0)

        self.result.frames_processed = 1
        self.result.detections = detections
        self.result.output_path = Path(out)

        if self.options.show:
            display = self.collaborators.make_display("predictions")
            try:
                display.show(vis, wait_ms=0)
            finally:
                display.close()

    def _render_outputs(self, frame: np.ndarray, detections: DetectionSet, sink: Optional[VideoSink]) -> np.ndarray:
        assert self.pipeline is not None
        opts = self.options
        try:
            vis = self.pipeline.render(frame, detections)
            if opts.prefix:
                self.collaborators.write_image(vis, f"{opts.prefix}_{self.result.frames_processed:08d}.jpg")
        except (OSError, RuntimeError, ValueError) as exc:
            raise OutputError(f"Could not render frame {self.result.frames_read}: {exc}") from exc
        if sink is not None:
            try:
                sink.write(vis)
            except (OSError, RuntimeError) as exc:
                # a video writer that failed once stays failed
                raise DetectorError(f"Could not write video {sink.path}: {exc}") from exc
        return vis

    def _run_demo(self) -> None:
        assert self.pipeline is not None
        opts = self.options
        every = opts.frame_skip + 1
        averager = OutputAverager(opts.avg_frames)
        min_interval = 1.0 / opts.fps if opts.fps else 0.0

        source = self.collaborators.open_capture(
            video=str(self.input_path) if self.input_path else None,
            camera_index=opts.camera_index,
            width=opts.width,
            height=opts.height,
            fps=opts.fps,
        )
        info = source.info()
        self.log.info(
            "Capture opened: %sx%s @ %s fps",
            info.width or "?",
            info.height or "?",
            f"{info.fps:g}" if info.fps else "?",
        )
        display: Optional[Display] = None
        sink: Optional[VideoSink] = None
        progress = tqdm(total=opts.max_frames or None, unit="frame", disable=not opts.progress)
        frame_shape = None

        try:
            if opts.show:
                display = self.collaborators.make_display(
                    "demo", width=opts.width, height=opts.height, fullscreen=opts.fullscreen
                )
            if opts.output_path:
                sink = self.collaborators.make_video_sink(opts.output_path, opts.fps or info.fps)

            while not self.cancel.is_set():
                frame = source.read()
                if frame is None:
                    break
                self.result.frames_read += 1
                if (self.result.frames_read - 1) % every != 0:
                    continue

                if getattr(frame, "shape", None) != frame_shape:
                    # a new frame size starts a new averaging window
                    averager.reset()
                    frame_shape = getattr(frame, "shape", None)

                started = time.perf_counter()
                try:
                    with self._acquire(frame) as image:
                        detections = self._process_frame(image, averager)
                    vis = self._render_outputs(frame, detections, sink)
                except (InputError, InferenceError, OutputError) as exc:
                    self.result.frames_failed += 1
                    self.log.warning("Skipping frame %d: %s", self.result.frames_read, exc)
                    continue

                if display is not None and not display.show(vis):
                    self.cancel.set()
                self._transition(PipelineState.RENDERED)

                self.result.frames_processed += 1
                self.result.detections = detections
                progress.update(1)
                if opts.max_frames and self.result.frames_processed >= opts.max_frames:
                    break

                if min_interval:
                    remaining = min_interval - (time.perf_counter() - started)
                    if remaining > 0:
                        time.sleep(remaining)
            if self.cancel.is_set():
                self.log.info("Demo cancelled")
        finally:
            source.close()
            if sink is not None:
                sink.close()
                self.result.output_path = sink.path
            if display is not None:
                display.close()
            progress.close()

        self.log.info(
            "Demo finished: %d frames read, %d processed, %d skipped on error",
            self.result.frames_read,
            self.result.frames_processed,
            self.result.frames_failed,
        )


def run(
    mode: Union[str, Mode],
    config_path: PathLike,
    model_config_path: PathLike,
    weights_path: Optional[PathLike] = None,
    input_path: Optional[PathLike] = None,
    options: Optional[Options] = None,
    *,
    collaborators: Optional[Collaborators] = None,
    logger: Optional[logging.Logger] = None,
    cancel: Optional[threading.Event] = None,
) -> RunResult:
    """
    Run detection in "test" (one image) or "demo" (capture loop) mode.

    An unknown mode raises `UsageError` before anything is loaded. Load-phase
    errors (`ConfigError`, `ModelLoadError`) are fatal; in demo mode frames
    that fail to decode, infer or render are logged and skipped. A video
    writer that cannot be opened stops the demo with a `DetectorError`.
    """

    resolved = Mode.parse(mode)
    runner = DetectorRunner(
        resolved,
        config_path,
        model_config_path,
        weights_path,
        input_path,
        options or Options(),
        collaborators=collaborators,
        logger=logger,
        cancel=cancel,
    )
    try:
        return runner.run()
    except DetectorError as exc:
        runner.log.error("%s", exc)
        raise
