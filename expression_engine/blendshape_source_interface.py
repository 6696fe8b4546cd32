"""
Blendshape Source Interface Module

This module defines an abstract interface for anything that can report the
current facial blendshape coefficients, allowing the expression calibrator and
the detection loop to work with different backends (MediaPipe webcam tracking,
scripted/manual input for tests and HTTP clients) interchangeably.
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional


@dataclass
class BlendshapeFrame:
    """
    Standardized per-tick reading from a blendshape source.

    blendshapes maps MediaPipe-style names (e.g. "mouthSmileLeft") to
    intensities in [0, 1]. It may be empty when no face is tracked.
    """
    blendshapes: Dict[str, float] = field(default_factory=dict)
    face_detected: bool = False
    timestamp: float = 0.0


class BlendshapeSource(ABC):
    """
    Abstract interface for blendshape providers.

    All backends must implement this interface to be driven by
    ExpressionStateDetector.
    """

    @abstractmethod
    def read(self) -> BlendshapeFrame:
        """
        Return the most recent reading.

        Returns:
            BlendshapeFrame (never None; use face_detected=False when nothing is tracked)
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this source is configured and can produce readings.

        Returns:
            True if the source can be used, False otherwise
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """
        Get the name of this source (e.g. "mediapipe", "manual").
        """
        pass

    def close(self) -> None:
        """
        Clean up resources. Override if needed.

        Default implementation does nothing.
        """
        pass


# Typical MediaPipe readings for each calibratable expression; used by the
# manual source (keyboard/HTTP stand-in for a real face) and the tests.
PRESET_BLENDSHAPES: Dict[str, Dict[str, float]] = {
    "neutral": {},
    "smile": {
        "mouthSmileLeft": 0.8, "mouthSmileRight": 0.8,
        "eyeSquintLeft": 0.3, "eyeSquintRight": 0.3,
    },
    "sad": {
        "mouthFrownLeft": 0.7, "mouthFrownRight": 0.7,
        "browInnerUp": 0.5, "mouthPucker": 0.2,
    },
}


class StaticBlendshapeSource(BlendshapeSource):
    """
    In-memory source whose current frame is set by the caller.

    Thread-safe: the HTTP layer writes frames while the detection loop reads them.
    """

    def __init__(self, blendshapes: Optional[Mapping[str, float]] = None, face_detected: bool = False):
        self._lock = threading.Lock()
        self._blendshapes: Dict[str, float] = dict(blendshapes or {})
        self._face_detected = bool(face_detected)
        self._timestamp = time.monotonic()

    def set_frame(self, blendshapes: Optional[Mapping[str, float]], face_detected: bool = True) -> None:
        """Replace the current reading."""
        with self._lock:
            self._blendshapes = {str(k): float(v) for k, v in (blendshapes or {}).items()}
            self._face_detected = bool(face_detected)
            self._timestamp = time.monotonic()

    def set_expression_preset(self, name: str) -> None:
        """
        Load one of PRESET_BLENDSHAPES with a face present.

        Raises:
            ValueError: if name is not a known preset
        """
        key = (name or "").strip().lower()
        if key not in PRESET_BLENDSHAPES:
            raise ValueError(f"Unknown preset: {name!r}")
        self.set_frame(PRESET_BLENDSHAPES[key], face_detected=True)

    def clear(self) -> None:
        """Simulate the face leaving the frame."""
        self.set_frame({}, face_detected=False)

    def read(self) -> BlendshapeFrame:
        with self._lock:
            return BlendshapeFrame(
                blendshapes=dict(self._blendshapes),
                face_detected=self._face_detected,
                timestamp=self._timestamp,
            )

    def is_available(self) -> bool:
        return True

    def get_name(self) -> str:
        return "manual"
