"""
MediaPipe Blendshape Source

BlendshapeSource implementation backed by MediaPipe's Face Landmarker task
(VIDEO running mode, one face, blendshape output enabled). Frames are read
from a VideoSourceHandler, so the same class serves webcams and recorded files.

Face presence is debounced: once a face has been seen, it counts as detected
until no face has been found for face_timeout seconds. Short tracking dropouts
(blinks, fast head turns) therefore do not interrupt a calibration window.
"""

import logging
import os
import time
from typing import Callable, Dict, Optional

import cv2
import mediapipe as mp
import numpy as np

from expression_engine.blendshape_source_interface import BlendshapeFrame, BlendshapeSource
from expression_engine.video_source_handler import VideoSourceHandler

logger = logging.getLogger(__name__)

# Log detection errors once per this many frames to avoid flooding
_ERROR_LOG_EVERY_N_FRAMES = 60


class MediaPipeBlendshapeSource(BlendshapeSource):
    """
    Blendshape source driven by MediaPipe Face Landmarker.

    The landmarker is created lazily on the first frame so that constructing
    the source (e.g. in tests or when the model is missing) stays cheap.
    """

    def __init__(
        self,
        video_handler: VideoSourceHandler,
        model_path: str = "face_landmarker.task",
        min_detection_confidence: float = 0.3,
        min_tracking_confidence: float = 0.3,
        face_timeout: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            video_handler: Initialized video source to pull frames from
            model_path: Path to the face_landmarker.task model bundle
            min_detection_confidence: Face detection/presence threshold (0-1)
            min_tracking_confidence: Tracking threshold (0-1)
            face_timeout: Seconds without a face before face_detected turns False
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.video_handler = video_handler
        self.model_path = model_path
        self._det_conf = max(0.01, min(0.99, float(min_detection_confidence)))
        self._track_conf = max(0.01, min(0.99, float(min_tracking_confidence)))
        self.face_timeout = float(face_timeout)
        self._clock = clock

        self._landmarker = None
        self._init_failed = False
        self._start_time = clock()
        self._last_timestamp_ms = -1
        self._frame_count = 0

        self._blendshapes: Dict[str, float] = {}
        self._face_detected = False
        self._last_face_time = 0.0

    def _get_landmarker(self):
        """Lazy init: create the Face Landmarker on first use. Returns None if unavailable."""
        if self._landmarker is None and not self._init_failed:
            if not os.path.exists(self.model_path):
                logger.warning("Face landmarker model not found: %s", self.model_path)
                self._init_failed = True
                return None
            try:
                options = mp.tasks.vision.FaceLandmarkerOptions(
                    base_options=mp.tasks.BaseOptions(model_asset_path=self.model_path),
                    running_mode=mp.tasks.vision.RunningMode.VIDEO,
                    num_faces=1,
                    min_face_detection_confidence=self._det_conf,
                    min_face_presence_confidence=self._det_conf,
                    min_tracking_confidence=self._track_conf,
                    output_face_blendshapes=True,
                    output_facial_transformation_matrixes=False,
                )
                self._landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
                logger.info("MediaPipe face landmarker initialized")
            except (RuntimeError, ValueError) as e:
                logger.error("MediaPipe face landmarker init failed: %s", e)
                self._init_failed = True
        return self._landmarker

    def _next_timestamp_ms(self, now: float) -> int:
        """VIDEO mode requires strictly increasing timestamps."""
        ts = int((now - self._start_time) * 1000)
        if ts <= self._last_timestamp_ms:
            ts = self._last_timestamp_ms + 1
        self._last_timestamp_ms = ts
        return ts

    def process_frame(self, frame: Optional[np.ndarray], now: Optional[float] = None) -> BlendshapeFrame:
        """
        Run the landmarker on one BGR frame and update the debounced face state.

        Args:
            frame: BGR image, or None when the camera produced nothing this tick
            now: Clock reading for this frame (defaults to the source clock)
        """
        now = self._clock() if now is None else float(now)
        landmarker = self._get_landmarker() if frame is not None else None

        if landmarker is not None and frame.size > 0:
            self._frame_count += 1
            try:
                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
                result = landmarker.detect_for_video(image, self._next_timestamp_ms(now))
                if result.face_landmarks:
                    self._face_detected = True
                    self._last_face_time = now
                    if result.face_blendshapes:
                        self._blendshapes = {
                            category.category_name: float(category.score)
                            for category in result.face_blendshapes[0]
                            if category.category_name
                        }
            except (RuntimeError, ValueError, cv2.error) as e:
                if self._frame_count % _ERROR_LOG_EVERY_N_FRAMES == 0:
                    logger.warning("Face landmarker error: %s", e)

        if self._face_detected and now - self._last_face_time > self.face_timeout:
            self._face_detected = False
            self._blendshapes = {}
            logger.info("Face lost")

        return BlendshapeFrame(
            blendshapes=dict(self._blendshapes),
            face_detected=self._face_detected,
            timestamp=now,
        )

    def read(self) -> BlendshapeFrame:
        ret, frame = self.video_handler.read_frame()
        return self.process_frame(frame if ret else None)

    def is_available(self) -> bool:
        """Needs the model file and an opened camera or video file."""
        return (
            os.path.exists(self.model_path)
            and not self._init_failed
            and self.video_handler.is_opened()
        )

    def get_name(self) -> str:
        return "mediapipe"

    def close(self) -> None:
        """Release the landmarker and the video source."""
        if self._landmarker is not None:
            try:
                self._landmarker.close()
            except RuntimeError as e:
                logger.warning("Face landmarker close failed: %s", e)
            self._landmarker = None
        self.video_handler.release()
