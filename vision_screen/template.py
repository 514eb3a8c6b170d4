"""Session output files shared by the screening runner.

:class:`BaseExperiment` names every output after the experiment, participant
and session, and writes three of them: the participant information as JSON,
one CSV row per completed test, and a pickle of the whole session for later
inspection.
"""
from __future__ import annotations

import csv
import json
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional


def convert_color_value(rgb_values: Iterable[int]) -> List[float]:
    """Convert 0-255 RGB values to PsychoPy's -1 to 1 colour range."""

    converted = [((value / 255.0) * 2.0) - 1.0 for value in rgb_values]
    return [round(val, 2) for val in converted]


@dataclass
class BaseExperiment:
    """Collects result rows for one session and writes them to disk."""

    experiment_name: str
    data_fields: List[str]
    output_directory: str = "."

    def __post_init__(self) -> None:
        self.experiment_info: Dict[str, str] = {}
        self.result_rows: List[Dict[str, object]] = []
        self._csv_path: Optional[Path] = None
        self._rows_written = 0

    def session_stem(self) -> str:
        participant = str(self.experiment_info.get("Participant ID", "")).strip() or "unknown"
        session = str(self.experiment_info.get("Session", "1")).strip() or "1"
        return f"{self.experiment_name}_{participant}_{session}"

    def output_path(self, suffix: str) -> Path:
        directory = Path(self.output_directory)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{self.session_stem()}{suffix}"

    def add_rows(self, rows: Iterable[Dict[str, object]]) -> None:
        self.result_rows.extend(rows)

    def write_csv(self) -> Path:
        """Append rows not yet on disk; the first call creates the file and header."""

        if self._csv_path is None:
            self._csv_path = self.output_path(".csv")
            with self._csv_path.open("w", newline="", encoding="utf-8") as csv_file:
                csv.writer(csv_file).writerow(self.data_fields)
            self._rows_written = 0
        with self._csv_path.open("a", newline="", encoding="utf-8") as csv_file:
            writer = csv.DictWriter(csv_file, fieldnames=self.data_fields, extrasaction="ignore")
            pending = self.result_rows[self._rows_written :]
            writer.writerows(pending)
            self._rows_written += len(pending)
        return self._csv_path

    def write_info(self) -> Path:
        path = self.output_path("_info.json")
        with path.open("w", encoding="utf-8") as info_file:
            json.dump(self.experiment_info, info_file, indent=2)
        return path

    def write_pickle(self) -> Path:
        path = self.output_path(".pickle")
        payload = {
            "experiment_name": self.experiment_name,
            "data_fields": self.data_fields,
            "experiment_info": self.experiment_info,
            "result_rows": self.result_rows,
            "csv_path": str(self._csv_path) if self._csv_path else None,
        }
        with path.open("wb") as pickle_file:
            pickle.dump(payload, pickle_file)
        return path


__all__ = ["BaseExperiment", "convert_color_value"]
