"""Facial landmark sources consumed by the gaze tracker.

A source hands out one set of normalised landmarks per :meth:`read` call, or
``None`` when no face is visible.  Sources have an explicit lifecycle: the
camera is opened on :meth:`acquire` and given back on :meth:`release`, and only
one owner may hold a given camera at a time.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)


class AcquisitionError(RuntimeError):
    """Raised when the camera or the landmark model cannot be obtained."""


@dataclass(frozen=True)
class Point:
    """Normalised 2-D landmark with the same ``x``/``y`` fields MediaPipe uses."""

    x: float
    y: float


Landmarks = Sequence[Any]


class LandmarkSource(Protocol):
    def acquire(self) -> None:
        ...

    def read(self) -> Optional[Landmarks]:
        ...

    def release(self) -> None:
        ...

    @property
    def is_acquired(self) -> bool:
        ...


class CameraRegistry:
    """Grants each camera index to a single owner at a time."""

    _lock = threading.Lock()
    _owners: Dict[int, object] = {}

    @classmethod
    def claim(cls, camera_index: int, owner: object) -> None:
        with cls._lock:
            holder = cls._owners.get(camera_index)
            if holder is not None and holder is not owner:
                raise AcquisitionError(f"Camera {camera_index} is already in use")
            cls._owners[camera_index] = owner

    @classmethod
    def release(cls, camera_index: int, owner: object) -> None:
        with cls._lock:
            if cls._owners.get(camera_index) is owner:
                del cls._owners[camera_index]

    @classmethod
    def owner_of(cls, camera_index: int) -> Optional[object]:
        with cls._lock:
            return cls._owners.get(camera_index)


class MediaPipeLandmarkSource:
    """Webcam frames (OpenCV) run through MediaPipe FaceMesh.

    The FaceMesh model is created on first acquisition and kept for later
    sessions; the camera itself is opened and closed with every session.
    """

    def __init__(
        self,
        camera_index: int = 0,
        *,
        width: int = 640,
        height: int = 480,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ) -> None:
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self._face_mesh: Any = None
        self._capture: Any = None
        self._cv2: Any = None

    @property
    def is_acquired(self) -> bool:
        return self._capture is not None

    def _load_face_mesh(self) -> Any:
        if self._face_mesh is not None:
            return self._face_mesh
        try:
            import mediapipe as mp
        except ImportError as exc:
            raise AcquisitionError(
                "mediapipe is required for camera gaze tracking. "
                "Install it via 'pip install vision-screen[camera]'."
            ) from exc
        if not hasattr(mp, "solutions"):
            raise AcquisitionError("This mediapipe build does not provide the FaceMesh solution")
        try:
            self._face_mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=False,
                max_num_faces=1,
                refine_landmarks=True,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
        except Exception as exc:
            raise AcquisitionError(f"FaceMesh initialization failed: {exc}") from exc
        logger.info("MediaPipe FaceMesh initialized")
        return self._face_mesh

    def acquire(self) -> None:
        if self.is_acquired:
            return
        try:
            import cv2
        except ImportError as exc:
            raise AcquisitionError(
                "opencv-python is required for camera capture. "
                "Install it via 'pip install vision-screen[camera]'."
            ) from exc
        self._load_face_mesh()
        CameraRegistry.claim(self.camera_index, self)
        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            CameraRegistry.release(self.camera_index, self)
            raise AcquisitionError(
                f"Cannot open camera {self.camera_index}; check the device and permissions"
            )
        for prop, value in (
            (cv2.CAP_PROP_FRAME_WIDTH, self.width),
            (cv2.CAP_PROP_FRAME_HEIGHT, self.height),
        ):
            capture.set(prop, value)
        self._cv2 = cv2
        self._capture = capture
        logger.info("Camera %d acquired", self.camera_index)

    def read(self) -> Optional[Landmarks]:
        if self._capture is None:
            raise RuntimeError("Landmark source has not been acquired")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        frame_rgb = self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)
        results = self._face_mesh.process(frame_rgb)
        faces = getattr(results, "multi_face_landmarks", None)
        if not faces:
            return None
        return faces[0].landmark

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info("Camera %d released", self.camera_index)
        CameraRegistry.release(self.camera_index, self)

    def close(self) -> None:
        """Release the camera and dispose of the FaceMesh model."""

        self.release()
        if self._face_mesh is not None:
            self._face_mesh.close()
            self._face_mesh = None


class ReplayLandmarkSource:
    """Plays back recorded frames; ``None`` entries are frames without a face."""

    def __init__(self, frames: Iterable[Optional[Sequence[Tuple[float, float]]]]) -> None:
        self._frames: List[Optional[List[Point]]] = [
            None if frame is None else [Point(float(x), float(y)) for x, y in frame]
            for frame in frames
        ]
        self._position = 0
        self._acquired = False

    @property
    def is_acquired(self) -> bool:
        return self._acquired

    @property
    def remaining(self) -> int:
        return len(self._frames) - self._position

    def acquire(self) -> None:
        self._acquired = True

    def read(self) -> Optional[Landmarks]:
        if not self._acquired:
            raise RuntimeError("Landmark source has not been acquired")
        if self._position >= len(self._frames):
            return None
        frame = self._frames[self._position]
        self._position += 1
        return frame

    def release(self) -> None:
        self._acquired = False


__all__ = [
    "AcquisitionError",
    "CameraRegistry",
    "LandmarkSource",
    "Landmarks",
    "MediaPipeLandmarkSource",
    "Point",
    "ReplayLandmarkSource",
]
