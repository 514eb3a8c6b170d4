"""PsychoPy presentation loops for the three assessments.

Each ``run_*_session`` helper owns a window loop: it pumps a
:class:`~vision_screen.timing.CooperativeScheduler` bound to a PsychoPy clock,
draws the engine's read-only snapshot, forwards keyboard input to the engine
and returns the engine's terminal result.
"""
from __future__ import annotations

import logging
import random
from typing import Callable, List, Optional, Sequence, Tuple

from psychopy import core, visual
from psychopy.hardware import keyboard

from .config import ContrastTestConfig, FieldTestConfig, GazeTrackerConfig
from .contrast_test import AdaptivePlateEngine, ContrastResult
from .field_test import FieldResult, StimulusTrialEngine
from .gaze import DIRECTIONS, GazeCalibrationTracker, GazeResult, TrackerState
from .landmarks import LandmarkSource
from .plates import (
    GratingPlate,
    NoisePlate,
    PresentedPlate,
    adjust_plate_scale,
    eye_chart_heights,
    grating_amplitude,
    grating_stripe_count,
    noise_field,
    noise_ink_rgb,
    number_ink_level,
    plate_size_px,
)
from .template import convert_color_value
from .timing import CooperativeScheduler

logger = logging.getLogger(__name__)


class ExperimentAbort(Exception):
    """Raised when the participant issues a quit command (e.g., presses ESC)."""


GRATING_ORIENTATIONS = {"vertical": 0.0, "horizontal": 90.0, "diagonal": 45.0}
PROMPT_SECONDS: float = 2.5


def _clock_scheduler(clock: core.Clock) -> CooperativeScheduler:
    return CooperativeScheduler(time_source=lambda: clock.getTime() * 1000.0)


def _check_quit(
    quit_kb: keyboard.Keyboard | None,
    quit_keys: Sequence[str],
    on_quit: Callable[[], None] | None = None,
) -> None:
    """Raise :class:`ExperimentAbort` if a quit key is waiting in the buffer."""

    if quit_kb is None or not quit_keys:
        return
    quit_list = list(quit_keys)
    for key in quit_kb.getKeys(quit_list, waitRelease=False):
        if key.name in quit_list:
            if on_quit is not None:
                on_quit()
            raise ExperimentAbort(f"Quit key '{key.name}' pressed")


def _norm_to_height(win: visual.Window, pos: Tuple[float, float]) -> Tuple[float, float]:
    """Map a ``norm`` position onto ``height`` units for round stimuli."""

    width, height = win.size
    aspect = float(width) / float(height) if height else 1.0
    return pos[0] * aspect / 2.0, pos[1] / 2.0


def show_instructions(
    win: visual.Window,
    text: str,
    *,
    response_kb: keyboard.Keyboard,
    quit_kb: keyboard.Keyboard | None,
    quit_keys: Sequence[str],
    continue_key: str = "space",
) -> None:
    """Display ``text`` until the participant presses ``continue_key``."""

    message = visual.TextStim(
        win,
        text=f"{text}\n\nPress {continue_key.upper()} to begin.",
        color="white",
        height=0.04,
        wrapWidth=1.4,
        units="height",
    )
    response_kb.clearEvents()
    while True:
        message.draw()
        win.flip()
        if response_kb.getKeys([continue_key], waitRelease=False):
            return
        _check_quit(quit_kb, quit_keys)
        core.wait(0.01)


# ---------------------------------------------------------------------------
# Field test
# ---------------------------------------------------------------------------

def run_field_session(
    *,
    win: visual.Window,
    config: FieldTestConfig,
    response_kb: keyboard.Keyboard,
    quit_kb: keyboard.Keyboard | None,
    response_keys: Sequence[str] = ("space",),
    quit_keys: Sequence[str] = ("escape",),
    rng: random.Random | None = None,
) -> FieldResult:
    """Run the peripheral dot test and return its result."""

    results: List[FieldResult] = []
    clock = core.Clock()
    scheduler = _clock_scheduler(clock)
    engine = StimulusTrialEngine(scheduler, results.append, config=config, rng=rng)

    dot = visual.Circle(win, radius=0.02, fillColor="red", lineColor="red", units="height", edges=48)
    fixation = visual.TextStim(win, text="+", color="white", height=0.06, units="height")
    progress = visual.TextStim(win, text="", color="white", height=0.03, pos=(0, 0.45), units="height")
    miss_text = visual.TextStim(
        win, text="Missed", color="orange", height=0.04, pos=(0, -0.1), units="height"
    )

    response_kb.clearEvents()
    engine.start(config.total_trials, config.max_reaction_ms)
    while not results:
        scheduler.run_due()
        snapshot = engine.snapshot()
        progress.text = f"Trial {snapshot.trial_index + 1} of {snapshot.total_trials}"
        progress.draw()
        fixation.draw()
        if snapshot.stimulus_visible and snapshot.position is not None:
            dot.pos = _norm_to_height(win, snapshot.position)
            dot.draw()
        if snapshot.miss_feedback:
            miss_text.draw()
        win.flip()

        if response_kb.getKeys(list(response_keys), waitRelease=False):
            engine.respond()
        _check_quit(quit_kb, quit_keys, on_quit=engine.abort)

    return results[0]


# ---------------------------------------------------------------------------
# Contrast test
# ---------------------------------------------------------------------------

def _plate_stimuli(
    win: visual.Window, presented: PresentedPlate, scale: float
) -> List[visual.BaseVisualStim]:
    """Build the PsychoPy stimuli that draw ``presented``."""

    size = plate_size_px(scale)
    plate = presented.plate
    if isinstance(plate, GratingPlate):
        contrast = presented.contrast or 0.0
        stripes = grating_stripe_count(plate.frequency, scale)
        return [
            visual.GratingStim(
                win,
                tex="sqr",
                mask=None,
                units="pix",
                size=size,
                sf=stripes / (2.0 * size),
                ori=GRATING_ORIENTATIONS.get(plate.orientation, 0.0),
                contrast=grating_amplitude(contrast) / 128.0,
            )
        ]
    if isinstance(plate, NoisePlate):
        factor = presented.difficulty_factor or 0.0
        cells = noise_field(factor)
        image = (cells[::-1].astype(float) / 255.0) * 2.0 - 1.0
        return [
            visual.ImageStim(win, image=image, units="pix", size=size, interpolate=False),
            visual.TextStim(
                win,
                text=plate.answer,
                units="pix",
                height=size * 0.45,
                color=convert_color_value(noise_ink_rgb(factor)),
                colorSpace="rgb",
                bold=True,
            ),
        ]
    ink = number_ink_level(presented.contrast or 0.0)
    return [
        visual.Rect(
            win,
            width=size,
            height=size,
            units="pix",
            fillColor=convert_color_value((210, 210, 210)),
            lineColor=None,
            colorSpace="rgb",
        ),
        visual.TextStim(
            win,
            text=plate.answer,
            units="pix",
            height=size * 0.55,
            color=convert_color_value((ink, ink, ink)),
            colorSpace="rgb",
        ),
    ]


def preview_plate_scale(
    win: visual.Window,
    initial_scale: float,
    *,
    response_kb: keyboard.Keyboard,
    quit_keys: Sequence[str] = ("escape",),
) -> float:
    """Let the participant size the plates against an eye chart; return the scale."""

    scale = adjust_plate_scale(initial_scale)
    title = visual.TextStim(
        win,
        text=(
            "Use LEFT / RIGHT to resize the chart until the letters look like an "
            "eye chart at your viewing distance (about 40 cm for a phone, 1 m for "
            "a laptop). Press RETURN to continue."
        ),
        color="white",
        height=0.03,
        wrapWidth=1.4,
        pos=(0, 0.38),
        units="height",
    )
    label = visual.TextStim(win, text="", color="white", height=0.03, pos=(0, -0.4), units="height")
    lines = [visual.TextStim(win, text="", color="white", units="pix", bold=True) for _ in range(3)]

    response_kb.clearEvents()
    while True:
        offset = plate_size_px(scale) * 0.3
        for index, (stim, (text, height)) in enumerate(zip(lines, eye_chart_heights(scale))):
            stim.text = text
            stim.height = height
            stim.pos = (0, offset - index * plate_size_px(scale) * 0.25)
            stim.draw()
        label.text = f"Scale {scale:.2f}x"
        title.draw()
        label.draw()
        win.flip()

        for key in response_kb.getKeys(waitRelease=False):
            if key.name in quit_keys:
                raise ExperimentAbort(f"Quit key '{key.name}' pressed")
            if key.name in ("left", "down"):
                scale = adjust_plate_scale(scale, -1)
            elif key.name in ("right", "up"):
                scale = adjust_plate_scale(scale, 1)
            elif key.name in ("return", "num_enter"):
                return scale


def _typed_character(name: str) -> Optional[str]:
    if name.startswith("num_"):
        name = name[4:]
    if len(name) == 1 and name.isalnum():
        return name
    return None


def run_contrast_session(
    *,
    win: visual.Window,
    config: ContrastTestConfig,
    response_kb: keyboard.Keyboard,
    quit_kb: keyboard.Keyboard | None,
    quit_keys: Sequence[str] = ("escape",),
) -> ContrastResult:
    """Run the staircase plate test with typed answers."""

    scale = config.plate_scale
    if config.preview_scale:
        scale = preview_plate_scale(win, scale, response_kb=response_kb, quit_keys=quit_keys)
        logger.info("Plate scale set to %.2f", scale)

    results: List[ContrastResult] = []
    engine = AdaptivePlateEngine(results.append, config=config)
    progress = visual.TextStim(win, text="", color="white", height=0.03, pos=(0, 0.42), units="height")
    prompt = visual.TextStim(win, text="", color="white", height=0.04, pos=(0, -0.38), units="height")
    warning = visual.TextStim(
        win, text="Type an answer first", color="orange", height=0.03, pos=(0, -0.45), units="height"
    )

    presented: Optional[PresentedPlate] = engine.start()
    stims = _plate_stimuli(win, presented, scale)
    typed = ""
    warn_until = 0.0
    clock = core.Clock()
    response_kb.clearEvents()

    while not results:
        state = engine.progress()
        progress.text = f"Plate {state.trial_index + 1} of {state.total_trials}  |  level {state.level}"
        prompt.text = f"Answer: {typed}_"
        for stim in stims:
            stim.draw()
        progress.draw()
        prompt.draw()
        if clock.getTime() < warn_until:
            warning.draw()
        win.flip()

        for key in response_kb.getKeys(waitRelease=False):
            if key.name in quit_keys:
                engine.abort()
                raise ExperimentAbort(f"Quit key '{key.name}' pressed")
            if key.name == "backspace":
                typed = typed[:-1]
            elif key.name in ("return", "num_enter"):
                response = engine.submit(typed)
                if response is None:
                    warn_until = clock.getTime() + 1.0
                    continue
                typed = ""
                if engine.current_plate is not None and engine.current_plate is not presented:
                    presented = engine.current_plate
                    stims = _plate_stimuli(win, presented, scale)
                if results:
                    break
            else:
                char = _typed_character(key.name)
                if char is not None and len(typed) < 12:
                    typed += char
        if quit_kb is not None and quit_kb is not response_kb:
            _check_quit(quit_kb, quit_keys, on_quit=engine.abort)

    return results[0]


# ---------------------------------------------------------------------------
# Gaze test
# ---------------------------------------------------------------------------

def run_gaze_session(
    *,
    win: visual.Window,
    config: GazeTrackerConfig,
    source: LandmarkSource,
    response_kb: keyboard.Keyboard,
    quit_kb: keyboard.Keyboard | None,
    stop_key: str = "s",
    quit_keys: Sequence[str] = ("escape",),
) -> Optional[GazeResult]:
    """Run the calibrated gaze test; ``None`` if the camera could not start."""

    results: List[GazeResult] = []
    clock = core.Clock()
    scheduler = _clock_scheduler(clock)
    tracker = GazeCalibrationTracker(scheduler, results.append, source=source, config=config)
    status = visual.TextStim(win, text="", color="white", height=0.03, pos=(0, -0.42), units="height")
    cue = visual.TextStim(win, text="", color="yellow", height=0.08, units="height")
    target = visual.Circle(win, radius=0.015, fillColor="white", lineColor="white", units="height")

    if not tracker.start(config.duration_s):
        status.text = tracker.status
        hold = core.Clock()
        while hold.getTime() < 2.0:
            status.draw()
            win.flip()
        return None

    tracking_since: Optional[float] = None
    response_kb.clearEvents()
    try:
        while not results:
            tracker.step()
            scheduler.run_due()
            if tracker.state is TrackerState.TRACKING:
                if tracking_since is None:
                    tracking_since = clock.getTime()
                elapsed = clock.getTime() - tracking_since
                direction = DIRECTIONS[int(elapsed / PROMPT_SECONDS) % len(DIRECTIONS)]
                cue.text = f"Look {direction.upper()}"
                cue.draw()
            else:
                target.draw()
            status.text = tracker.status
            status.draw()
            win.flip()

            if response_kb.getKeys([stop_key], waitRelease=False):
                tracker.stop()
            _check_quit(quit_kb, quit_keys, on_quit=tracker.abort)
    finally:
        if not results:
            tracker.abort()

    return results[0]


__all__ = [
    "ExperimentAbort",
    "show_instructions",
    "run_field_session",
    "preview_plate_scale",
    "run_contrast_session",
    "run_gaze_session",
]
