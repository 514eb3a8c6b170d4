"""Self-administered vision screening assessments.

This package exposes the three assessment engines (peripheral reaction-time
field test, adaptive contrast plates and calibrated gaze tracker) together
with the scheduler and score sink they work with.  The engines have no PsychoPy
dependency; the PsychoPy runner lives in :mod:`vision_screen.experiment` and is
launched through :mod:`vision_screen.cli`.
"""

from .config import (
    ContrastTestConfig,
    FieldTestConfig,
    GazeTrackerConfig,
    ScreeningConfig,
)
from .contrast_test import AdaptivePlateEngine, ContrastResult, StaircaseState
from .field_test import FieldResult, StimulusTrialEngine, TrialPhase, TrialRecord
from .gaze import GazeCalibrationTracker, GazeResult, TrackerState
from .landmarks import AcquisitionError, MediaPipeLandmarkSource, ReplayLandmarkSource
from .plates import PLATE_POOL, PlateSelector
from .score_book import ScoreBook
from .scoring import contrast_score, field_score, severity_band
from .timing import CooperativeScheduler

__all__ = [
    "ScreeningConfig",
    "FieldTestConfig",
    "ContrastTestConfig",
    "GazeTrackerConfig",
    "CooperativeScheduler",
    "StimulusTrialEngine",
    "TrialPhase",
    "TrialRecord",
    "FieldResult",
    "AdaptivePlateEngine",
    "StaircaseState",
    "ContrastResult",
    "PLATE_POOL",
    "PlateSelector",
    "GazeCalibrationTracker",
    "GazeResult",
    "TrackerState",
    "AcquisitionError",
    "MediaPipeLandmarkSource",
    "ReplayLandmarkSource",
    "ScoreBook",
    "field_score",
    "contrast_score",
    "severity_band",
]
