"""High-level orchestration of a vision screening session in PsychoPy."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from psychopy import core, gui, visual
from psychopy.hardware import keyboard

from .config import ScreeningConfig
from .contrast_test import ContrastResult
from .field_test import FieldResult
from .gaze import GazeResult
from .landmarks import MediaPipeLandmarkSource
from .score_book import ScoreBook
from .scoring import RECOMMENDATIONS
from .template import BaseExperiment
from .trial import (
    ExperimentAbort,
    run_contrast_session,
    run_field_session,
    run_gaze_session,
    show_instructions,
)

if TYPE_CHECKING:
    from psychopy.visual.window import Window
else:  # pragma: no cover - used only for static analysis fallbacks
    Window = Any

logger = logging.getLogger(__name__)


class VisionScreeningExperiment(BaseExperiment):
    """Run the selected assessments one after another and record their scores."""

    def __init__(
        self,
        config: ScreeningConfig | None = None,
        *,
        score_book: ScoreBook | None = None,
    ):
        self.config = config or ScreeningConfig()
        self.score_book = score_book or ScoreBook(self.config.score_file)
        self._landmark_source: Optional[MediaPipeLandmarkSource] = None
        super().__init__(
            experiment_name=self.config.experiment_name,
            data_fields=self.config.data_fields,
            output_directory=self.config.results_directory,
        )

    # ------------------------------------------------------------------
    # GUI helpers
    # ------------------------------------------------------------------
    def collect_participant_info(self) -> Dict[str, str]:
        """Display an info dialog to collect participant metadata."""

        info = {"Participant ID": "", "Session": "1"}
        dialog = gui.DlgFromDict(info, title="Vision Screening", fixed=["Session"])
        if not dialog.OK:
            core.quit()
        return info

    # ------------------------------------------------------------------
    # Window creation
    # ------------------------------------------------------------------
    def create_window(self) -> Window:
        if self.config.debug_mode:
            size, fullscr = list(self.config.debug_window_size), False
        else:
            size, fullscr = list(self.config.window_size), self.config.full_screen
        return visual.Window(
            size=size,
            fullscr=fullscr,
            screen=self.config.screen_index,
            units=self.config.window_units,
            color=list(self.config.background_color),
            allowGUI=self.config.debug_mode,
        )

    def _landmarks(self) -> MediaPipeLandmarkSource:
        if self._landmark_source is None:
            self._landmark_source = MediaPipeLandmarkSource(self.config.camera_index)
        return self._landmark_source

    # ------------------------------------------------------------------
    # Test scheduling
    # ------------------------------------------------------------------
    def run_tests(self, win: Window) -> List[Dict[str, object]]:
        """Run every configured test and return one summary row per test."""

        response_kb = keyboard.Keyboard()
        instructions = self.config.instructions_text()
        rows: List[Dict[str, object]] = []
        common = dict(response_kb=response_kb, quit_kb=response_kb, quit_keys=self.config.quit_keys)

        for test in self.config.tests:
            show_instructions(win, instructions[test], **common)
            if test == "field":
                field_result = run_field_session(
                    win=win,
                    config=self.config.field,
                    response_keys=self.config.response_keys,
                    **common,
                )
                rows.append(self._record_field(field_result))
            elif test == "contrast":
                contrast_result = run_contrast_session(win=win, config=self.config.contrast, **common)
                rows.append(self._record_contrast(contrast_result))
            elif test == "gaze":
                gaze_result = run_gaze_session(
                    win=win,
                    config=self.config.gaze,
                    source=self._landmarks(),
                    stop_key=self.config.stop_key,
                    **common,
                )
                if gaze_result is None:
                    logger.warning("Gaze test skipped: camera or landmark model unavailable")
                    continue
                rows.append(self._record_gaze(gaze_result))
        return rows

    def _record_field(self, result: FieldResult) -> Dict[str, object]:
        self.score_book.record("field", result.score)
        verdict = "possible field loss" if result.field_loss_suspected else "normal"
        return {
            "test": "field",
            "score": result.score,
            "severity": self.score_book.severity("field"),
            "verdict": verdict,
            "detail": f"misses={result.misses} avg_ms={result.avg_reaction_ms:.0f}",
        }

    def _record_contrast(self, result: ContrastResult) -> Dict[str, object]:
        self.score_book.record("contrast", result.score)
        return {
            "test": "contrast",
            "score": result.score,
            "severity": self.score_book.severity("contrast"),
            "verdict": "",
            "detail": f"correct={result.correct_count}/{result.total_trials} seed={result.seed}",
        }

    def _record_gaze(self, result: GazeResult) -> Dict[str, object]:
        self.score_book.record("gaze", result.verdict)
        counts = " ".join(f"{name}={count}" for name, count in result.counters.items())
        return {
            "test": "gaze",
            "score": "",
            "severity": "",
            "verdict": result.verdict,
            "detail": counts,
        }

    def _show_summary(self, win: Window, rows: List[Dict[str, object]]) -> None:
        lines = ["Screening complete", ""]
        for row in rows:
            line = f"{row['test']}: {row['score'] or row['verdict']}"
            if row["severity"]:
                line += f" ({row['severity']} risk) - {RECOMMENDATIONS[str(row['severity'])]}"
            lines.append(line)
        lines += ["", "These results are not a diagnosis.", "Press any key to finish."]
        text = visual.TextStim(win, text="\n".join(lines), color="white", height=0.03, wrapWidth=1.4, units="height")
        text.draw()
        win.flip()
        keyboard.Keyboard().waitKeys(maxWait=30.0)

    # ------------------------------------------------------------------
    # Data persistence
    # ------------------------------------------------------------------
    def save_results(self, rows: List[Dict[str, object]], *, participant_info: Dict[str, str]) -> Path:
        """Save the summary CSV and participant info for this session."""

        self.experiment_info.update(participant_info)
        participant = participant_info.get("Participant ID", "unknown")
        self.add_rows({**row, "participant": participant} for row in rows)
        csv_path = self.write_csv()
        self.write_info()
        return csv_path

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(self) -> None:
        """Execute the full screening pipeline."""

        participant_info = self.collect_participant_info()
        self.experiment_info.update(participant_info)

        win = self.create_window()
        rows: List[Dict[str, object]] = []
        aborted = False
        try:
            rows = self.run_tests(win)
            self._show_summary(win, rows)
        except ExperimentAbort as exc:
            logger.info("Session aborted: %s", exc)
            aborted = True
        finally:
            if self._landmark_source is not None:
                self._landmark_source.close()
            win.close()

        if not aborted:
            path = self.save_results(rows, participant_info=participant_info)
            logger.info("Results saved to %s", path)
            self.write_pickle()

        core.quit()


__all__ = ["VisionScreeningExperiment"]
