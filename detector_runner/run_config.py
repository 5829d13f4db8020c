from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, Sequence, Set

from .errors import ConfigError

STR_KEYS = {"output_path", "prefix", "weights", "input", "log_level", "log_format"}
INT_KEYS = {"max_detections", "camera_index", "frame_skip", "avg_frames", "width", "height", "max_frames"}
FLOAT_KEYS = {"threshold", "hier_threshold", "nms_iou_threshold", "fps"}
BOOL_KEYS = {"fullscreen", "show", "progress"}


def load_run_config(path: Path) -> Dict[str, object]:
    if not path.exists():
        raise ConfigError(f"Run config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid run config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Run config must be a JSON object")
    return payload


def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> Set[str]:
    """
    Dests of the options spelled out on the command line; those win over the run config.
    """

    dests: Set[str] = set()
    for opt, action in parser._option_string_actions.items():
        for arg in argv:
            if arg == opt or arg.startswith(f"{opt}="):
                dests.add(action.dest)
                break
    return dests


def apply_run_config(
    *,
    args: argparse.Namespace,
    payload: Dict[str, object],
    cli_dests: Set[str],
) -> None:
    if "config" in payload:
        raise ConfigError("run config must not include the 'config' key")
    allowed = STR_KEYS | INT_KEYS | FLOAT_KEYS | BOOL_KEYS
    unknown = sorted(k for k in payload.keys() if k not in allowed)
    if unknown:
        raise ConfigError(f"Unknown run config keys: {unknown}")

    for key, value in payload.items():
        if key in cli_dests or value is None:
            continue
        # positionals given on the command line also win
        if key in ("weights", "input") and getattr(args, key, None) is not None:
            continue
        if key in STR_KEYS:
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"{key} must be a non-empty string")
            setattr(args, key, value)
        elif key in BOOL_KEYS:
            if not isinstance(value, bool):
                raise ConfigError(f"{key} must be a boolean")
            setattr(args, key, value)
        elif key in INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{key} must be an integer")
            if isinstance(value, float) and not value.is_integer():
                raise ConfigError(f"{key} must be an integer")
            setattr(args, key, int(value))
        else:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{key} must be a number")
            setattr(args, key, float(value))
