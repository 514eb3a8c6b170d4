"""Peripheral reaction-time ("field") test engine.

A red dot is revealed at one of six peripheral positions after a random
delay.  The participant responds as quickly as possible; a response window
that elapses without one counts as a miss.  The engine owns one authoritative
session state, driven only by its own timer callbacks and :meth:`respond`.
"""
from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .config import FieldTestConfig, validate_field_settings
from .scoring import field_score
from .timing import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

# Left/right column x top/middle/bottom row, in PsychoPy ``norm`` units.
STIMULUS_POSITIONS: Tuple[Tuple[float, float], ...] = (
    (-0.8, 0.6),
    (0.8, 0.6),
    (-0.8, -0.6),
    (0.8, -0.6),
    (-0.8, 0.0),
    (0.8, 0.0),
)


class TrialPhase(enum.Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    INTER_TRIAL_PAUSE = "inter_trial_pause"
    FINISHED = "finished"


@dataclass(frozen=True)
class TrialRecord:
    """Outcome of one completed trial."""

    trial_index: int
    appeared_at: float
    responded_at: Optional[float]
    reaction_ms: Optional[float]
    is_miss: bool
    position: Tuple[float, float] = (0.0, 0.0)


@dataclass(frozen=True)
class FieldResult:
    score: int
    misses: int
    avg_reaction_ms: float
    reaction_times: Tuple[float, ...]
    trials: Tuple[TrialRecord, ...] = ()

    @property
    def field_loss_suspected(self) -> bool:
        return self.misses > 1


@dataclass(frozen=True)
class FieldSnapshot:
    """Read-only view of the session for whoever draws it."""

    phase: TrialPhase
    trial_index: int
    total_trials: int
    stimulus_visible: bool
    position: Optional[Tuple[float, float]]
    miss_feedback: bool
    misses: int


@dataclass
class _SessionState:
    max_trials: int
    max_reaction_ms: int
    trial_count: int = 0
    miss_count: int = 0
    reaction_times: List[float] = field(default_factory=list)
    records: List[TrialRecord] = field(default_factory=list)
    phase: TrialPhase = TrialPhase.IDLE
    position: Optional[Tuple[float, float]] = None
    appeared_at: Optional[float] = None
    miss_feedback: bool = False


class StimulusTrialEngine:
    """Runs a sequence of reveal/respond trials and scores them."""

    def __init__(
        self,
        scheduler: Scheduler,
        on_result: Callable[[FieldResult], None],
        *,
        config: FieldTestConfig | None = None,
        rng: random.Random | None = None,
        positions: Sequence[Tuple[float, float]] = STIMULUS_POSITIONS,
    ) -> None:
        self.scheduler = scheduler
        self.on_result = on_result
        self.config = config or FieldTestConfig()
        self.rng = rng or random.Random()
        self.positions = tuple(positions)
        self._state: Optional[_SessionState] = None
        self._timers: List[TimerHandle] = []

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def start(self, total_trials: int | None = None, max_reaction_ms: int | None = None) -> None:
        """Begin a new session, discarding any previous one."""

        total = self.config.total_trials if total_trials is None else int(total_trials)
        window = self.config.max_reaction_ms if max_reaction_ms is None else int(max_reaction_ms)
        validate_field_settings(total, window)
        self._cancel_timers()
        self._state = _SessionState(max_trials=total, max_reaction_ms=window)
        logger.info("Field test started: %d trials, %d ms window", total, window)
        self._schedule_next_reveal()

    def respond(self) -> bool:
        """Register a participant response; return ``False`` if it was ignored."""

        state = self._state
        if (
            state is None
            or state.phase is not TrialPhase.AWAITING_RESPONSE
            or state.appeared_at is None
        ):
            return False
        now = self.scheduler.now_ms()
        reaction = now - state.appeared_at
        self._cancel_timers()
        state.phase = TrialPhase.INTER_TRIAL_PAUSE
        state.reaction_times.append(reaction)
        self._close_trial(
            state,
            TrialRecord(
                trial_index=state.trial_count,
                appeared_at=state.appeared_at,
                responded_at=now,
                reaction_ms=reaction,
                is_miss=False,
                position=state.position or (0.0, 0.0),
            )
        )
        logger.debug("Trial %d response after %.0f ms", state.trial_count + 1, reaction)
        if self._has_more_trials(state):
            state.trial_count += 1
            self._track(
                self.scheduler.call_later(
                    self.config.inter_trial_pause_ms, self._schedule_next_reveal
                )
            )
        else:
            self._finish(state)
        return True

    def abort(self) -> None:
        """Stop without producing a result."""

        self._cancel_timers()
        if self._state is not None and self._state.phase is not TrialPhase.FINISHED:
            logger.info("Field test aborted at trial %d", self._state.trial_count + 1)
            self._state.phase = TrialPhase.FINISHED
            self._state.position = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def phase(self) -> TrialPhase:
        return self._state.phase if self._state else TrialPhase.IDLE

    @property
    def records(self) -> Tuple[TrialRecord, ...]:
        return tuple(self._state.records) if self._state else ()

    def snapshot(self) -> FieldSnapshot:
        state = self._state
        if state is None:
            return FieldSnapshot(TrialPhase.IDLE, 0, self.config.total_trials, False, None, False, 0)
        visible = state.phase is TrialPhase.AWAITING_RESPONSE
        return FieldSnapshot(
            phase=state.phase,
            trial_index=state.trial_count,
            total_trials=state.max_trials,
            stimulus_visible=visible,
            position=state.position if visible else None,
            miss_feedback=state.miss_feedback,
            misses=state.miss_count,
        )

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------
    def _schedule_next_reveal(self) -> None:
        state = self._state
        if state is None:
            return
        state.phase = TrialPhase.INTER_TRIAL_PAUSE
        state.position = None
        span = self.config.max_delay_ms - self.config.min_delay_ms
        delay = self.config.min_delay_ms + self.rng.random() * span
        self._track(self.scheduler.call_later(delay, self._reveal))

    def _reveal(self) -> None:
        state = self._state
        if state is None or state.phase is TrialPhase.FINISHED:
            return
        state.position = self.rng.choice(self.positions)
        state.appeared_at = self.scheduler.now_ms()
        state.phase = TrialPhase.AWAITING_RESPONSE
        self._track(self.scheduler.call_later(state.max_reaction_ms, self._expire))

    def _expire(self) -> None:
        state = self._state
        if (
            state is None
            or state.phase is not TrialPhase.AWAITING_RESPONSE
            or state.appeared_at is None
        ):
            return
        state.phase = TrialPhase.INTER_TRIAL_PAUSE
        state.miss_count += 1
        self._close_trial(
            state,
            TrialRecord(
                trial_index=state.trial_count,
                appeared_at=state.appeared_at,
                responded_at=None,
                reaction_ms=None,
                is_miss=True,
                position=state.position or (0.0, 0.0),
            )
        )
        logger.info("Missed dot at trial %d", state.trial_count + 1)
        state.miss_feedback = True
        self._track(self.scheduler.call_later(self.config.miss_feedback_ms, self._clear_feedback))
        if self._has_more_trials(state):
            state.trial_count += 1
            self._schedule_next_reveal()
        else:
            self._finish(state)

    def _clear_feedback(self) -> None:
        if self._state is not None:
            self._state.miss_feedback = False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _has_more_trials(state: _SessionState) -> bool:
        return state.trial_count + 1 < state.max_trials

    @staticmethod
    def _close_trial(state: _SessionState, record: TrialRecord) -> None:
        state.records.append(record)
        state.position = None

    def _finish(self, state: _SessionState) -> None:
        self._cancel_timers()
        state.phase = TrialPhase.FINISHED
        state.miss_feedback = False
        rts = list(state.reaction_times)
        avg = sum(rts) / len(rts) if rts else float(state.max_reaction_ms)
        score = field_score(state.miss_count, avg)
        result = FieldResult(
            score=score,
            misses=state.miss_count,
            avg_reaction_ms=avg,
            reaction_times=tuple(rts),
            trials=tuple(state.records),
        )
        logger.info(
            "Field test finished: rts=%s misses=%d avg=%.1f score=%d",
            rts,
            state.miss_count,
            avg,
            score,
        )
        self.on_result(result)

    def _track(self, handle: TimerHandle) -> None:
        self._timers = [timer for timer in self._timers if timer.active]
        self._timers.append(handle)

    def _cancel_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []


__all__ = [
    "STIMULUS_POSITIONS",
    "TrialPhase",
    "TrialRecord",
    "FieldResult",
    "FieldSnapshot",
    "StimulusTrialEngine",
]
