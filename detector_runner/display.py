from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)

QUIT_KEYS = (27, ord("q"))


class Display:
    """
    OpenCV window for annotated frames. `show()` returns False once the user
    pressed q or ESC.
    """

    def __init__(self, name: str = "detections", *, width: int = 0, height: int = 0, fullscreen: bool = False):
        self.name = name
        cv2.namedWindow(name, cv2.WINDOW_NORMAL)
        if fullscreen:
            cv2.setWindowProperty(name, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
        elif width and height:
            cv2.resizeWindow(name, width, height)
        self._open = True

    def show(self, image_bgr: np.ndarray, wait_ms: int = 1) -> bool:
        cv2.imshow(self.name, image_bgr)
        key = cv2.waitKey(wait_ms) & 0xFF
        return key not in QUIT_KEYS

    def close(self) -> None:
        if self._open:
            cv2.destroyWindow(self.name)
            self._open = False


class VideoSink:
    """
    Annotated-video writer, opened lazily on the first frame so the frame size is known.
    """

    def __init__(self, path: Union[str, Path], fps: Optional[float] = None):
        self.path = Path(path)
        self.fps = fps if fps and fps > 0 else 30.0
        self._writer: Optional[cv2.VideoWriter] = None

    def write(self, image_bgr: np.ndarray) -> None:
        if self._writer is None:
            h, w = image_bgr.shape[:2]
            fourcc = cv2.VideoWriter_fourcc(*"mp4v")
            writer = cv2.VideoWriter(str(self.path), fourcc, self.fps, (w, h))
            if not writer.isOpened():
                raise RuntimeError(f"Failed to open video writer: {self.path}")
            LOGGER.info("Writing annotated video to %s", self.path)
            self._writer = writer
        self._writer.write(image_bgr)

    def close(self) -> None:
        if self._writer is not None:
            self._writer.release()
            self._writer = None
