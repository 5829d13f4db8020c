from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import Options
from .errors import DetectorError, UsageError
from .pipeline import Mode, run
from .run_config import apply_run_config, collect_cli_dests, load_run_config

LOGGER = logging.getLogger("detector_runner")

USAGE = "%(prog)s [test/demo] [data cfg] [model cfg] [weights (optional)] [input (optional)] [options]"


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="detector-runner",
        usage=USAGE,
        description="Run object detection on one image (test) or a live feed (demo).",
    )
    parser.add_argument("mode", help="test: one image, demo: camera or video loop")
    parser.add_argument("data_config", help="Data config (classes, names, optional tree).")
    parser.add_argument("model_config", help="Model config JSON (input size, classes, backend).")
    parser.add_argument("weights", nargs="?", default=None, help="Weights file (overrides the model config).")
    parser.add_argument("input", nargs="?", default=None, help="Input image (test) or video file (demo).")

    parser.add_argument("--config", default=None, help="Run config JSON; command-line options take precedence.")
    parser.add_argument("--thresh", dest="threshold", type=float, default=0.5, help="Detection threshold.")
    parser.add_argument("--hier", dest="hier_threshold", type=float, default=0.5, help="Hierarchy threshold.")
    parser.add_argument("--nms", dest="nms_iou_threshold", type=float, default=0.45, help="NMS IoU threshold (<=0 disables).")
    parser.add_argument("--out", dest="output_path", default=None, help="Output image (test) or video (demo).")
    parser.add_argument("--max-det", dest="max_detections", type=int, default=300, help="Max detections per frame.")

    demo = parser.add_argument_group("demo")
    demo.add_argument("-c", "--camera", dest="camera_index", type=int, default=0, help="Camera index.")
    demo.add_argument("-s", "--frame-skip", dest="frame_skip", type=int, default=0, help="Frames skipped between processed frames.")
    demo.add_argument("--avg", dest="avg_frames", type=int, default=3, help="Average predictions over N frames.")
    demo.add_argument("--prefix", default=None, help="Save every annotated frame as <prefix>_<n>.jpg.")
    demo.add_argument("--width", type=int, default=0, help="Capture/display width.")
    demo.add_argument("--height", type=int, default=0, help="Capture/display height.")
    demo.add_argument("--fps", type=float, default=0.0, help="Target frame rate (0 = unthrottled).")
    demo.add_argument("--fullscreen", action="store_true", help="Fullscreen display window.")
    demo.add_argument("--show", action="store_true", help="Show a window; press q/ESC to stop.")
    demo.add_argument("--max-frames", dest="max_frames", type=int, default=0, help="Stop after N processed frames (0 = no limit).")
    demo.add_argument("--progress", action="store_true", help="Show a progress bar.")

    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    parser.add_argument("--log-format", choices=["text", "json"], default="text", help="Logging format.")
    return parser


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    if log_format == "json":
        formatter = logging.Formatter('{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}')
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), handlers=[handler], force=True)


def options_from_args(args: argparse.Namespace) -> Options:
    return Options(
        threshold=float(args.threshold),
        hier_threshold=float(args.hier_threshold),
        nms_iou_threshold=float(args.nms_iou_threshold),
        output_path=args.output_path,
        max_detections=int(args.max_detections),
        camera_index=int(args.camera_index),
        frame_skip=int(args.frame_skip),
        avg_frames=int(args.avg_frames),
        prefix=args.prefix,
        width=int(args.width),
        height=int(args.height),
        fps=float(args.fps),
        fullscreen=bool(args.fullscreen),
        show=bool(args.show or args.fullscreen),
        max_frames=int(args.max_frames),
        progress=bool(args.progress),
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv_list: List[str] = list(sys.argv[1:] if argv is None else argv)
    parser = build_arg_parser()
    if len(argv_list) < 3:
        parser.print_usage(sys.stderr)
        return UsageError.exit_code
    args = parser.parse_args(argv_list)

    try:
        mode = Mode.parse(args.mode)
        if args.config:
            payload = load_run_config(Path(args.config))
            apply_run_config(args=args, payload=payload, cli_dests=collect_cli_dests(parser, argv_list))
        setup_logging(args.log_level, args.log_format)

        if mode is Mode.TEST and not args.input:
            raise UsageError("image file not defined")
        options = options_from_args(args)
    except DetectorError as exc:
        print(f"{parser.prog}: {exc}", file=sys.stderr)
        if isinstance(exc, UsageError):
            parser.print_usage(sys.stderr)
        return exc.exit_code

    try:
        run(mode, args.data_config, args.model_config, args.weights, args.input, options, logger=LOGGER)
    except DetectorError as exc:
        return exc.exit_code
    except (OSError, RuntimeError) as exc:
        LOGGER.exception("Run failed: %s", exc)
        return DetectorError.exit_code
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
