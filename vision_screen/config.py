"""Configuration helpers for the vision screening assessments.

The dataclasses here store the user-editable parameters of the three engines
and of the PsychoPy session that hosts them.  Keeping these values in a
separate module makes it easy to discover what can be tweaked without touching
the engine or data management code.
"""
from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Dict, List, Optional, Sequence, Tuple

MIN_FIELD_TRIALS: int = 3
MAX_FIELD_TRIALS: int = 12
MIN_REACTION_WINDOW_MS: int = 800
MAX_REACTION_WINDOW_MS: int = 5000

CONTRAST_TRIALS: int = 9
MIN_LEVEL: int = 0
MAX_LEVEL: int = 8

LEFT_EYE_RING: Tuple[int, ...] = (33, 133, 159, 158, 157, 173, 246)
RIGHT_EYE_RING: Tuple[int, ...] = (362, 263, 386, 385, 384, 398, 466)

TEST_KINDS: Tuple[str, ...] = ("field", "contrast", "gaze")


def validate_field_settings(total_trials: int, max_reaction_ms: int) -> None:
    """Raise ``ValueError`` when the field test settings are out of range."""

    if not MIN_FIELD_TRIALS <= total_trials <= MAX_FIELD_TRIALS:
        raise ValueError(
            f"total_trials must be between {MIN_FIELD_TRIALS} and {MAX_FIELD_TRIALS}, "
            f"got {total_trials}"
        )
    if not MIN_REACTION_WINDOW_MS <= max_reaction_ms <= MAX_REACTION_WINDOW_MS:
        raise ValueError(
            f"max_reaction_ms must be between {MIN_REACTION_WINDOW_MS} and "
            f"{MAX_REACTION_WINDOW_MS}, got {max_reaction_ms}"
        )


@dataclass
class FieldTestConfig:
    """Timing parameters for the peripheral reaction-time test."""

    total_trials: int = 6
    max_reaction_ms: int = 2000
    min_delay_ms: float = 1000.0
    max_delay_ms: float = 2000.0
    inter_trial_pause_ms: float = 800.0
    miss_feedback_ms: float = 700.0

    def __post_init__(self) -> None:
        validate_field_settings(self.total_trials, self.max_reaction_ms)
        if self.max_delay_ms < self.min_delay_ms:
            raise ValueError("max_delay_ms must not be smaller than min_delay_ms")


@dataclass
class ContrastTestConfig:
    """Staircase parameters for the contrast plate test."""

    total_trials: int = CONTRAST_TRIALS
    start_level: int = 4
    seed: Optional[int] = None
    plate_scale: float = 1.0
    preview_scale: bool = True

    def __post_init__(self) -> None:
        if self.total_trials < 1:
            raise ValueError("total_trials must be at least 1")
        if not MIN_LEVEL <= self.start_level <= MAX_LEVEL:
            raise ValueError(f"start_level must be within [{MIN_LEVEL}, {MAX_LEVEL}]")
        if self.plate_scale <= 0:
            raise ValueError("plate_scale must be positive")


@dataclass
class GazeTrackerConfig:
    """Thresholds used by the calibrated gaze direction classifier."""

    duration_s: float = 12.0
    calibration_frames: int = 40
    dx_threshold: float = 0.035
    dy_threshold: float = 0.03
    min_detections: int = 8
    status_every_frames: int = 6
    left_eye_indices: Tuple[int, ...] = LEFT_EYE_RING
    right_eye_indices: Tuple[int, ...] = RIGHT_EYE_RING

    def __post_init__(self) -> None:
        if self.duration_s <= 0:
            raise ValueError(f"duration_s must be positive, got {self.duration_s}")
        for name in ("calibration_frames", "min_detections", "status_every_frames"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.dx_threshold <= 0 or self.dy_threshold <= 0:
            raise ValueError("gaze thresholds must be positive")
        if not self.left_eye_indices or not self.right_eye_indices:
            raise ValueError("eye landmark indices must not be empty")


@dataclass
class ScreeningConfig:
    """Container for session parameters and runtime options."""

    experiment_name: str = "vision_screening"
    data_fields: List[str] = dataclass_field(
        default_factory=lambda: [
            "participant",
            "test",
            "score",
            "severity",
            "verdict",
            "detail",
        ]
    )
    tests: Tuple[str, ...] = TEST_KINDS
    results_directory: str = "data"
    score_file: Optional[str] = "data/scores.json"
    screen_index: int = 0
    full_screen: bool = True
    window_size: Tuple[int, int] = (1280, 720)
    window_units: str = "norm"
    background_color: Sequence[float] = (-0.6, -0.6, -0.6)
    quit_keys: Tuple[str, ...] = ("escape",)
    response_keys: Tuple[str, ...] = ("space",)
    stop_key: str = "s"
    camera_index: int = 0
    debug_mode: bool = False
    debug_window_size: Tuple[int, int] = (1024, 768)
    field: FieldTestConfig = dataclass_field(default_factory=FieldTestConfig)
    contrast: ContrastTestConfig = dataclass_field(default_factory=ContrastTestConfig)
    gaze: GazeTrackerConfig = dataclass_field(default_factory=GazeTrackerConfig)

    def __post_init__(self) -> None:
        unknown = [name for name in self.tests if name not in TEST_KINDS]
        if unknown:
            raise ValueError(f"Unknown test(s): {', '.join(unknown)}")

    def instructions_text(self) -> Dict[str, str]:
        """Return the on-screen instruction string for each test."""

        response = " / ".join(key.upper() for key in self.response_keys)
        quit_key = self.quit_keys[0].upper() if self.quit_keys else "ESC"
        return {
            "field": (
                "Peripheral Field Test\n\n"
                "Keep your eyes on the centre cross. A red dot will appear near "
                f"the edges of the screen: press {response} as soon as you see it.\n\n"
                f"{self.field.total_trials} dots, {self.field.max_reaction_ms} ms to respond.\n"
                f"Press {quit_key} at any time to exit."
            ),
            "contrast": (
                "Contrast Plate Test\n\n"
                "Type the number you see, or the stripe orientation "
                "(vertical, horizontal or diagonal), then press RETURN.\n\n"
                "The plates adapt to your answers as you go."
                f"\nPress {quit_key} at any time to exit."
            ),
            "gaze": (
                "Eye Movement Test\n\n"
                "Look at the centre while the tracker calibrates, then follow "
                "the prompts: LEFT, RIGHT, UP and DOWN.\n\n"
                f"Press {self.stop_key.upper()} to stop early or {quit_key} to exit."
            ),
        }
