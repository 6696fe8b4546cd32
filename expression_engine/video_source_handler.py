"""
Video Source Handler Module

Thin wrapper over OpenCV capture for the two sources the face tracker reads from:
- Webcam (first camera that opens and returns a frame)
- Local video files (useful for replaying a recorded calibration)

Frames can be mirrored horizontally (selfie view) and/or flipped vertically
before they reach the face tracker.
"""

import sys
import cv2
from enum import Enum
from typing import Optional, Tuple
import numpy as np


class VideoSourceType(Enum):
    """Enumeration of supported video source types."""
    WEBCAM = "webcam"
    FILE = "file"


class VideoSourceHandler:
    """
    Handler for reading frames from a webcam or a video file.

    Usage:
        handler = VideoSourceHandler(mirror=True)
        handler.initialize_source(VideoSourceType.WEBCAM)

        while True:
            ret, frame = handler.read_frame()
            if not ret:
                break
            # Process frame
    """

    def __init__(
        self,
        width: int = 640,
        height: int = 480,
        fps: int = 30,
        mirror: bool = True,
        flip_vertical: bool = False,
    ):
        self.cap: Optional[cv2.VideoCapture] = None
        self.source_type: Optional[VideoSourceType] = None
        self.source_path: Optional[str] = None
        self.width = int(width)
        self.height = int(height)
        self.fps = int(fps)
        self.mirror = bool(mirror)
        self.flip_vertical = bool(flip_vertical)

    def initialize_source(
        self,
        source_type: VideoSourceType,
        source_path: Optional[str] = None,
    ) -> bool:
        """
        Initialize a video source.

        Args:
            source_type: WEBCAM or FILE
            source_path: Path to the video file (required for FILE)

        Returns:
            True if the source opened, False otherwise
        """
        self.release()
        self.source_type = source_type
        self.source_path = source_path

        try:
            if source_type == VideoSourceType.WEBCAM:
                apis = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY] if sys.platform == "win32" else [cv2.CAP_ANY]
                for api in apis:
                    for index in (0, 1, 2):
                        cap = cv2.VideoCapture(index, api)
                        if cap.isOpened() and cap.read()[0]:
                            self.cap = cap
                            break
                        cap.release()
                    if self.cap is not None:
                        break
                if self.cap is None:
                    self.cap = cv2.VideoCapture(0)
                if self.cap.isOpened():
                    self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
                    self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
                    self.cap.set(cv2.CAP_PROP_FPS, self.fps)
                    self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            elif source_type == VideoSourceType.FILE:
                if not source_path:
                    raise ValueError("source_path is required for FILE source type")
                self.cap = cv2.VideoCapture(source_path)

            else:
                raise ValueError(f"Unsupported source type: {source_type}")

            return self.cap is not None and self.cap.isOpened()

        except (ValueError, cv2.error) as e:
            print(f"Error initializing video source: {e}", file=sys.stderr)
            self.release()
            return False

    def is_opened(self) -> bool:
        return self.cap is not None and self.cap.isOpened()

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read a frame from the video source, mirrored/flipped as configured.

        Returns:
            Tuple of (success, frame):
            - success: True if a frame was read, False otherwise
            - frame: BGR image array if successful, None otherwise
        """
        if not self.is_opened():
            return False, None

        ret, frame = self.cap.read()
        if not ret or frame is None:
            return False, None
        return True, self.orient(frame)

    def orient(self, frame: np.ndarray) -> np.ndarray:
        """Apply mirror / vertical flip settings to a BGR frame."""
        if self.mirror and self.flip_vertical:
            return cv2.flip(frame, -1)
        if self.mirror:
            return cv2.flip(frame, 1)
        if self.flip_vertical:
            return cv2.flip(frame, 0)
        return frame

    def get_properties(self) -> dict:
        """
        Get properties of the current video source.

        Returns:
            Dictionary with width, height, fps and frame_count (-1 for webcams),
            or an empty dict when nothing is open.
        """
        if not self.is_opened():
            return {}
        frame_count = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT))
        return {
            'width': int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            'height': int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            'fps': self.cap.get(cv2.CAP_PROP_FPS),
            'frame_count': frame_count if self.source_type == VideoSourceType.FILE else -1,
        }

    def release(self) -> None:
        """Release the current video source and free resources."""
        if self.cap:
            self.cap.release()
            self.cap = None
        self.source_type = None
        self.source_path = None

    def __del__(self):
        """Cleanup on deletion."""
        self.release()
