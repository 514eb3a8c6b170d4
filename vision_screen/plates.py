"""Perceptual plates for the contrast test and their difficulty mapping.

Three plate kinds are used: square-wave gratings whose orientation must be
named, numbers hidden in a coloured noise field, and low-contrast numbers on a
grey background.  The staircase level (0..8) scales each plate's base contrast
or base difficulty into the effective value handed to the renderer.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .config import MAX_LEVEL, MIN_LEVEL
from .scoring import round_half_up

MIN_CONTRAST: float = 0.08
MAX_CONTRAST: float = 0.98
MIN_DIFFICULTY_FACTOR: float = 0.05
PLATE_SIZE_PX: int = 220
NOISE_GRID: int = 40
NUMBER_BACKGROUND: int = 210
MIN_PLATE_SCALE: float = 0.7
MAX_PLATE_SCALE: float = 1.6
PLATE_SCALE_STEP: float = 0.05
# Eye-chart preview lines and their height as a fraction of the plate size.
EYE_CHART_LINES: Tuple[Tuple[str, float], ...] = (("E", 0.22), ("FP", 0.12), ("TOZ", 0.08))

SEED_MULTIPLIER: int = 9301
SEED_INCREMENT: int = 49297
SEED_MODULUS: int = 233280


def _normalise(answer: str) -> str:
    return answer.strip().lower()


@dataclass(frozen=True)
class GratingPlate:
    orientation: str
    base_contrast: float
    frequency: int
    kind: str = "grating"

    @property
    def expected_answer(self) -> str:
        return self.orientation

    def is_correct(self, answer: str) -> bool:
        return _normalise(answer) == self.orientation.lower()


@dataclass(frozen=True)
class NoisePlate:
    answer: str
    base_difficulty: int
    kind: str = "noise"

    @property
    def expected_answer(self) -> str:
        return self.answer

    def is_correct(self, answer: str) -> bool:
        return _normalise(answer) == self.answer.lower()


@dataclass(frozen=True)
class NumberPlate:
    answer: str
    base_contrast: float
    kind: str = "number"

    @property
    def expected_answer(self) -> str:
        return self.answer

    def is_correct(self, answer: str) -> bool:
        return _normalise(answer) == self.answer.lower()


Plate = Union[GratingPlate, NoisePlate, NumberPlate]

PLATE_POOL: Tuple[Plate, ...] = (
    GratingPlate("vertical", 0.85, 8),
    GratingPlate("horizontal", 0.7, 12),
    GratingPlate("diagonal", 0.55, 10),
    NoisePlate("12", 1),
    NoisePlate("8", 2),
    NoisePlate("29", 3),
    NumberPlate("5", 0.32),
    NumberPlate("3", 0.22),
    NumberPlate("7", 0.14),
)


def _check_level(level: int) -> None:
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValueError(f"level must be within [{MIN_LEVEL}, {MAX_LEVEL}], got {level}")


def level_factor(level: int) -> float:
    """Convert a staircase level into the 0.2..1.0 contrast multiplier."""

    _check_level(level)
    return 0.2 + (level / MAX_LEVEL) * 0.8


def level_to_contrast(level: int, base_contrast: float) -> float:
    """Effective contrast for grating and number plates, rounded to 3 places."""

    contrast = max(MIN_CONTRAST, min(MAX_CONTRAST, base_contrast * level_factor(level)))
    return round(contrast, 3)


def level_to_difficulty(level: int, base_difficulty: int) -> float:
    """Effective difficulty factor for noise plates."""

    base = min(1.0, 1.0 - (base_difficulty - 1) * 0.15)
    return max(MIN_DIFFICULTY_FACTOR, base * level_factor(level))


@dataclass(frozen=True)
class PresentedPlate:
    """A plate together with the parameters it is drawn with at ``level``."""

    plate: Plate
    level: int
    contrast: Optional[float] = None
    difficulty_factor: Optional[float] = None

    @property
    def effective_value(self) -> float:
        if self.contrast is not None:
            return self.contrast
        if self.difficulty_factor is not None:
            return self.difficulty_factor
        return 0.0


def present(plate: Plate, level: int) -> PresentedPlate:
    if isinstance(plate, NoisePlate):
        return PresentedPlate(plate, level, difficulty_factor=level_to_difficulty(level, plate.base_difficulty))
    return PresentedPlate(plate, level, contrast=level_to_contrast(level, plate.base_contrast))


def seed_offset(seed: int) -> int:
    """Spread a session seed over the pool with a small linear congruential step."""

    return abs((seed * SEED_MULTIPLIER + SEED_INCREMENT) % SEED_MODULUS)


class PlateSelector:
    """Deterministic plate choice from ``(trial_index, level, seed)``.

    The same seed reproduces the same plate sequence for the same difficulty
    trajectory.  Plates may repeat within a session.
    """

    def __init__(self, seed: int | None = None, pool: Sequence[Plate] = PLATE_POOL) -> None:
        if not pool:
            raise ValueError("Plate pool must not be empty")
        self.seed = random.randrange(10**9) if seed is None else int(seed)
        self.pool: Tuple[Plate, ...] = tuple(pool)
        self._offset = seed_offset(self.seed)

    def index_for(self, trial_index: int, level: int) -> int:
        return (trial_index + level + self._offset) % len(self.pool)

    def select(self, trial_index: int, level: int) -> PresentedPlate:
        return present(self.pool[self.index_for(trial_index, level)], level)

    def schedule(self, level: int, trials: int) -> Tuple[PresentedPlate, ...]:
        """Plates shown if the level stayed at ``level`` for ``trials`` trials."""

        return tuple(self.select(index, level) for index in range(trials))


# ---------------------------------------------------------------------------
# Rendering parameters
# ---------------------------------------------------------------------------

def plate_size_px(scale: float = 1.0) -> float:
    return PLATE_SIZE_PX * scale


def adjust_plate_scale(scale: float, steps: int = 0) -> float:
    """Move ``scale`` by ``steps`` increments, kept within the preview range."""

    moved = scale + steps * PLATE_SCALE_STEP
    return round(max(MIN_PLATE_SCALE, min(MAX_PLATE_SCALE, moved)), 2)


def eye_chart_heights(scale: float) -> Tuple[Tuple[str, int], ...]:
    """Letter heights in pixels for the scale preview chart."""

    size = plate_size_px(scale)
    return tuple((text, round_half_up(size * fraction)) for text, fraction in EYE_CHART_LINES)


def grating_stripe_count(frequency: int, scale: float = 1.0) -> int:
    return max(4, round_half_up(frequency * scale))


def grating_amplitude(contrast: float) -> int:
    """Grey-level swing around mid grey (128) for a grating of ``contrast``."""

    return round_half_up(contrast * 120)


def number_ink_level(contrast: float) -> int:
    """Grey level (0-255) of a low-contrast number drawn on the 210 background."""

    return round_half_up(NUMBER_BACKGROUND * (1.0 - contrast))


def noise_ink_rgb(difficulty_factor: float) -> Tuple[int, int, int]:
    shift = round_half_up(60 * difficulty_factor)
    return 80 + shift, 70 + shift, 70 + shift


def noise_field(
    difficulty_factor: float,
    grid: int = NOISE_GRID,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Return a ``(grid, grid, 3)`` uint8 background of reddish noise cells."""

    generator = rng if rng is not None else np.random.default_rng()
    spread = np.array([80.0, 60.0, 80.0]) * difficulty_factor
    base = np.array([140.0, 120.0, 120.0])
    cells = base + generator.random((grid, grid, 3)) * spread
    return np.rint(cells).clip(0, 255).astype(np.uint8)


__all__ = [
    "GratingPlate",
    "NoisePlate",
    "NumberPlate",
    "Plate",
    "PLATE_POOL",
    "PresentedPlate",
    "PlateSelector",
    "level_factor",
    "level_to_contrast",
    "level_to_difficulty",
    "present",
    "seed_offset",
    "plate_size_px",
    "adjust_plate_scale",
    "eye_chart_heights",
    "grating_stripe_count",
    "grating_amplitude",
    "number_ink_level",
    "noise_ink_rgb",
    "noise_field",
    "MIN_CONTRAST",
    "MAX_CONTRAST",
    "MIN_PLATE_SCALE",
    "MAX_PLATE_SCALE",
]
