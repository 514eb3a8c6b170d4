"""Score sink that keeps the latest result of each test between sessions."""
from __future__ import annotations

import json
import logging
import math
import os
from pathlib import Path
from typing import Dict, Optional, Union

from .config import TEST_KINDS
from .scoring import MAX_SCORE, MIN_SCORE, RECOMMENDATIONS, severity_band

logger = logging.getLogger(__name__)

ScoreValue = Union[int, str]
VERDICTS = ("normal", "abnormal")


def _coerce(kind: str, value: object) -> Optional[ScoreValue]:
    """Return a valid stored value for ``kind`` or ``None`` if unusable."""

    if kind == "gaze":
        return value if value in VERDICTS else None
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    if value != int(value) or not MIN_SCORE <= value <= MAX_SCORE:
        return None
    return int(value)


class ScoreBook:
    """Latest score per test kind, optionally mirrored to a JSON file."""

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._scores: Dict[str, ScoreValue] = {}
        if self.path is not None:
            self._load(self.path)

    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            with path.open("r", encoding="utf-8") as score_file:
                stored = json.load(score_file)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable score file %s: %s", path, exc)
            return
        if not isinstance(stored, dict):
            logger.warning("Ignoring score file %s: expected a JSON object", path)
            return
        for kind in TEST_KINDS:
            if kind in stored:
                value = _coerce(kind, stored[kind])
                if value is not None:
                    self._scores[kind] = value

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as score_file:
            json.dump(self._scores, score_file, indent=2, sort_keys=True)

    def record(self, kind: str, value: ScoreValue) -> None:
        if kind not in TEST_KINDS:
            raise ValueError(f"Unknown score kind '{kind}'")
        coerced = _coerce(kind, value)
        if coerced is None:
            raise ValueError(f"Invalid value for '{kind}': {value!r}")
        self._scores[kind] = coerced
        logger.info("Recorded %s score: %s", kind, coerced)
        self._save()

    def get(self, kind: str) -> Optional[ScoreValue]:
        return self._scores.get(kind)

    def severity(self, kind: str) -> Optional[str]:
        """Risk band for numeric scores; ``None`` for gaze or missing scores."""

        value = self._scores.get(kind)
        if kind == "gaze" or value is None:
            return None
        return severity_band(int(value))

    def reset(self) -> None:
        self._scores.clear()
        self._save()

    def summary(self) -> Dict[str, Dict[str, object]]:
        rows: Dict[str, Dict[str, object]] = {}
        for kind in TEST_KINDS:
            value = self._scores.get(kind)
            band = self.severity(kind)
            rows[kind] = {
                "value": value,
                "severity": band,
                "recommendation": RECOMMENDATIONS.get(band) if band else None,
            }
        return rows


__all__ = ["ScoreBook", "ScoreValue"]
