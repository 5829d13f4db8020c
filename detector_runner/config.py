from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, Union

from detect_kit.hierarchy import Hierarchy, load_hierarchy
from detect_kit.metadata import load_class_names, load_data_config

from .errors import ConfigError

PathLike = Union[str, Path]

DEFAULT_OUTPUT = "predictions"


@dataclass(frozen=True)
class Options:
    """
    Run options. The demo-only fields are ignored in test mode.
    """

    threshold: float = 0.5
    hier_threshold: float = 0.5
    nms_iou_threshold: float = 0.45
    output_path: Optional[str] = None
    max_detections: int = 300
    camera_index: int = 0
    frame_skip: int = 0
    avg_frames: int = 3
    prefix: Optional[str] = None
    width: int = 0
    height: int = 0
    fps: float = 0.0
    fullscreen: bool = False
    show: bool = False
    max_frames: int = 0
    progress: bool = False

    def __post_init__(self) -> None:
        for key in ("threshold", "hier_threshold"):
            value = getattr(self, key)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{key} must be in [0, 1], got {value}")
        if self.nms_iou_threshold > 1.0:
            raise ConfigError(f"nms_iou_threshold must be <= 1, got {self.nms_iou_threshold}")
        if self.max_detections < 1:
            raise ConfigError("max_detections must be >= 1")
        if self.camera_index < 0:
            raise ConfigError("camera_index must be >= 0")
        if self.frame_skip < 0:
            raise ConfigError("frame_skip must be >= 0")
        if self.avg_frames < 1:
            raise ConfigError("avg_frames must be >= 1")
        if self.width < 0 or self.height < 0:
            raise ConfigError("width/height must be >= 0")
        if self.fps < 0:
            raise ConfigError("fps must be >= 0")
        if self.max_frames < 0:
            raise ConfigError("max_frames must be >= 0")

    @property
    def nms_enabled(self) -> bool:
        return self.nms_iou_threshold > 0


@dataclass(frozen=True)
class Config:
    """
    Read-only run configuration built once at startup.
    """

    threshold: float
    hier_threshold: float
    nms_iou_threshold: float
    class_names: Tuple[str, ...]
    output_path: Optional[str] = None
    hierarchy: Optional[Hierarchy] = field(default=None, compare=False)

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    @property
    def resolved_output(self) -> str:
        return self.output_path or DEFAULT_OUTPUT


def load_config(data_config_path: PathLike, options: Options = Options()) -> Config:
    """
    Build the run `Config` from a data config file and the run options.

    The label list (and optional hierarchy tree) are read here; the class count
    declared in the data config must match the label list.
    """

    path = Path(data_config_path)
    try:
        data_cfg = load_data_config(path)
        names = load_class_names(data_cfg.names_path)
        hierarchy = load_hierarchy(data_cfg.tree_path) if data_cfg.tree_path else None
    except (OSError, ValueError) as exc:
        raise ConfigError(str(exc)) from exc

    if not names:
        raise ConfigError(f"Label list is empty: {data_cfg.names_path}")
    if data_cfg.classes is not None and data_cfg.classes != len(names):
        raise ConfigError(f"{path}: classes={data_cfg.classes} but {data_cfg.names_path} lists {len(names)} names")
    if hierarchy is not None and hierarchy.num_classes != len(names):
        raise ConfigError(f"{data_cfg.tree_path}: {hierarchy.num_classes} tree entries for {len(names)} classes")

    return Config(
        threshold=options.threshold,
        hier_threshold=options.hier_threshold,
        nms_iou_threshold=options.nms_iou_threshold,
        class_names=tuple(names),
        output_path=options.output_path,
        hierarchy=hierarchy,
    )
