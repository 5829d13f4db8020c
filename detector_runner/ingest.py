from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .errors import InputError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]


class CaptureSource:
    """
    Successive BGR frames from a video file or a camera.

    `read()` returns None once the source is exhausted. Release with `close()`.
    """

    def __init__(self, *, video: Optional[str] = None, camera_index: int = 0, width: int = 0, height: int = 0, fps: float = 0.0):
        if video is not None:
            cap = cv2.VideoCapture(video)
        else:
            cap = cv2.VideoCapture(int(camera_index))
            if width:
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            if height:
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            if fps:
                cap.set(cv2.CAP_PROP_FPS, fps)

        if not cap.isOpened():
            cap.release()
            what = f"video {video}" if video is not None else f"camera index {camera_index}"
            raise InputError(f"Could not open {what}")
        self._cap: Optional[cv2.VideoCapture] = cap

    def info(self) -> CaptureInfo:
        cap = self._cap
        if cap is None:
            return CaptureInfo(fps=None, width=None, height=None)
        fps = cap.get(cv2.CAP_PROP_FPS)
        w = cap.get(cv2.CAP_PROP_FRAME_WIDTH)
        h = cap.get(cv2.CAP_PROP_FRAME_HEIGHT)
        return CaptureInfo(
            fps=float(fps) if fps and fps > 0 else None,
            width=int(w) if w and w > 0 else None,
            height=int(h) if h and h > 0 else None,
        )

    def read(self) -> Optional[np.ndarray]:
        if self._cap is None:
            return None
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            LOGGER.debug("Capture source released")


def open_capture(
    *,
    video: Optional[str] = None,
    camera_index: int = 0,
    width: int = 0,
    height: int = 0,
    fps: float = 0.0,
) -> CaptureSource:
    return CaptureSource(video=video, camera_index=camera_index, width=width, height=height, fps=fps)
