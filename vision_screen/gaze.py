"""Calibrated gaze direction tracker.

The tracker averages both eye centroids over a short calibration window while
the participant looks straight ahead, then counts the frames in which the
averaged eye displacement from that baseline crosses a directional threshold.
A direction is considered seen once enough frames have been counted.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import GazeTrackerConfig
from .landmarks import AcquisitionError, LandmarkSource, Landmarks
from .scoring import gaze_verdict
from .timing import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

DIRECTIONS: Tuple[str, ...] = ("left", "right", "up", "down")


class TrackerState(enum.Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    TRACKING = "tracking"
    FINISHED = "finished"


@dataclass(frozen=True)
class Baseline:
    left_x: float
    left_y: float
    right_x: float
    right_y: float


@dataclass
class DetectionCounters:
    left: int = 0
    right: int = 0
    up: int = 0
    down: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in DIRECTIONS}


@dataclass(frozen=True)
class GazeResult:
    left: bool
    right: bool
    up: bool
    down: bool
    verdict: str
    counters: Dict[str, int] = field(default_factory=dict)
    baseline: Optional[Baseline] = None


def eye_centroid(landmarks: Landmarks, indices: Sequence[int]) -> np.ndarray:
    """Mean ``(x, y)`` of the landmarks listed in ``indices``."""

    points = np.array([(float(landmarks[i].x), float(landmarks[i].y)) for i in indices], dtype=float)
    return points.mean(axis=0)


def summarize(counters: DetectionCounters, min_detections: int) -> Dict[str, bool]:
    return {name: count >= min_detections for name, count in counters.as_dict().items()}


class GazeCalibrationTracker:
    """Frame-driven calibration and direction counting."""

    def __init__(
        self,
        scheduler: Scheduler,
        on_complete: Callable[[GazeResult], None],
        *,
        source: LandmarkSource | None = None,
        config: GazeTrackerConfig | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.on_complete = on_complete
        self.source = source
        self.config = config or GazeTrackerConfig()
        self.on_status = on_status
        self.state = TrackerState.IDLE
        self.status = "Idle - press start"
        self.counters = DetectionCounters()
        self.baseline: Optional[Baseline] = None
        self.frame_count = 0
        self._calib_frames = 0
        self._running_mean: Optional[np.ndarray] = None
        self._last_raw: Optional[np.ndarray] = None
        self._stop_timer: Optional[TimerHandle] = None
        self._source_held = False

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def start(self, duration_sec: float | None = None) -> bool:
        """Begin calibration; return ``False`` if the landmark source is unavailable."""

        if self.state in (TrackerState.CALIBRATING, TrackerState.TRACKING):
            raise RuntimeError("Gaze tracker is already running")
        duration = self.config.duration_s if duration_sec is None else float(duration_sec)
        if duration <= 0:
            raise ValueError("duration_sec must be positive")

        if self.source is not None:
            try:
                self.source.acquire()
            except AcquisitionError as exc:
                logger.warning("Gaze tracker could not start: %s", exc)
                self.state = TrackerState.IDLE
                self._set_status("Camera / model error - allow camera and try again")
                return False
            self._source_held = True

        self.counters = DetectionCounters()
        self.baseline = None
        self.frame_count = 0
        self._calib_frames = 0
        self._running_mean = None
        self._last_raw = None
        self.state = TrackerState.CALIBRATING
        self._stop_timer = self.scheduler.call_later(duration * 1000.0, self._on_timeout)
        logger.info("Gaze tracker started for %.1f s", duration)
        self._set_status("Calibrating - look at center")
        return True

    def step(self) -> Optional[TrackerState]:
        """Pull one frame from the injected source and process it."""

        if self.state not in (TrackerState.CALIBRATING, TrackerState.TRACKING):
            return None
        if self.source is None:
            raise RuntimeError("No landmark source was injected")
        try:
            landmarks = self.source.read()
        except Exception as exc:
            # A frame the extractor chokes on counts as a frame without a face.
            logger.warning("Landmark extraction failed on frame %d: %s", self.frame_count + 1, exc)
            landmarks = None
        self.process_frame(landmarks)
        return self.state

    def process_frame(self, landmarks: Optional[Landmarks]) -> None:
        if self.state not in (TrackerState.CALIBRATING, TrackerState.TRACKING):
            return
        self.frame_count += 1
        if not landmarks:
            logger.debug("No face in frame %d", self.frame_count)
            self._set_status("No face detected - centre your face")
            return

        left = eye_centroid(landmarks, self.config.left_eye_indices)
        right = eye_centroid(landmarks, self.config.right_eye_indices)
        raw = np.concatenate([left, right])
        self._last_raw = raw

        if self.state is TrackerState.CALIBRATING or self.baseline is None:
            self._calibrate(raw)
            return
        self._track(raw, self.baseline)

    def stop(self) -> Optional[GazeResult]:
        """Finish early with whatever has been counted so far."""

        if self.state not in (TrackerState.CALIBRATING, TrackerState.TRACKING):
            return None
        return self._finish("Stopped")

    def abort(self) -> None:
        """Tear down without reporting a result."""

        if self.state in (TrackerState.CALIBRATING, TrackerState.TRACKING):
            logger.info("Gaze tracker aborted")
            self.state = TrackerState.FINISHED
        self._teardown()

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------
    def _calibrate(self, raw: np.ndarray) -> None:
        n = self._calib_frames
        if self._running_mean is None:
            self._running_mean = raw.copy()
        else:
            self._running_mean = (self._running_mean * n + raw) / (n + 1)
        self._calib_frames = n + 1
        target = self.config.calibration_frames
        pct = int(round(self._calib_frames / target * 100))
        self._set_status(f"Calibrating - please look at center ({pct}%)")
        if self._calib_frames >= target:
            self.baseline = Baseline(*(float(v) for v in self._running_mean))
            self.state = TrackerState.TRACKING
            logger.info("Calibration complete: %s", self.baseline)
            self._set_status("Calibrated - now look LEFT/RIGHT/UP/DOWN when prompted")

    def _track(self, raw: np.ndarray, baseline: Baseline) -> None:
        base = np.array([baseline.left_x, baseline.left_y, baseline.right_x, baseline.right_y])
        delta = raw - base
        dx = float((delta[0] + delta[2]) / 2.0)
        dy = float((delta[1] + delta[3]) / 2.0)
        cfg = self.config
        if dx <= -cfg.dx_threshold:
            self.counters.left += 1
        elif dx >= cfg.dx_threshold:
            self.counters.right += 1
        if dy <= -cfg.dy_threshold:
            self.counters.up += 1
        elif dy >= cfg.dy_threshold:
            self.counters.down += 1
        if self.frame_count % cfg.status_every_frames == 0:
            c = self.counters
            self._set_status(f"Running - L:{c.left} R:{c.right} U:{c.up} D:{c.down}")

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    def _on_timeout(self) -> None:
        if self.state in (TrackerState.CALIBRATING, TrackerState.TRACKING):
            self._finish("Done")

    def _finish(self, label: str) -> GazeResult:
        if self.baseline is None and self._last_raw is not None:
            self.baseline = Baseline(*(float(v) for v in self._last_raw))
        self.state = TrackerState.FINISHED
        self._teardown()
        flags = summarize(self.counters, self.config.min_detections)
        verdict = gaze_verdict(flags)
        result = GazeResult(
            verdict=verdict,
            counters=self.counters.as_dict(),
            baseline=self.baseline,
            **flags,
        )
        word = "normal" if verdict == "normal" else "possible abnormal"
        self._set_status(f"{label} - {word}")
        logger.info("Gaze tracker finished: %s %s", result.counters, verdict)
        self.on_complete(result)
        return result

    def _teardown(self) -> None:
        if self._stop_timer is not None:
            self._stop_timer.cancel()
            self._stop_timer = None
        if self._source_held and self.source is not None:
            self.source.release()
        self._source_held = False

    def _set_status(self, message: str) -> None:
        self.status = message
        if self.on_status is not None:
            self.on_status(message)


__all__ = [
    "DIRECTIONS",
    "Baseline",
    "DetectionCounters",
    "GazeCalibrationTracker",
    "GazeResult",
    "TrackerState",
    "eye_centroid",
    "summarize",
]
