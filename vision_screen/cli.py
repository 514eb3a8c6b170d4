"""Command line helpers for running the vision screening session."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import (
    MAX_LEVEL,
    MIN_LEVEL,
    TEST_KINDS,
    ContrastTestConfig,
    FieldTestConfig,
    GazeTrackerConfig,
    ScreeningConfig,
)
from .plates import PlateSelector
from .score_book import ScoreBook

DEFAULTS = ScreeningConfig()


def _test_list(value: str) -> tuple[str, ...]:
    names = tuple(part.strip().lower() for part in value.split(",") if part.strip())
    unknown = [name for name in names if name not in TEST_KINDS]
    if not names or unknown:
        raise argparse.ArgumentTypeError(
            f"expected a comma-separated subset of {', '.join(TEST_KINDS)}"
        )
    return names


def build_arg_parser() -> argparse.ArgumentParser:
    """Create an argument parser exposing the runtime options."""

    parser = argparse.ArgumentParser(
        description=(
            "Run the self-administered vision screening tests (peripheral field, "
            "contrast plates, eye movement). Scores are heuristic, not a diagnosis."
        )
    )
    parser.add_argument(
        "--tests",
        type=_test_list,
        default=DEFAULTS.tests,
        help="Comma-separated tests to run, in order (default: field,contrast,gaze).",
    )
    parser.add_argument(
        "--trials",
        type=int,
        default=DEFAULTS.field.total_trials,
        help="Number of field test dots, 3-12 (default: %(default)s).",
    )
    parser.add_argument(
        "--max-reaction-ms",
        type=int,
        default=DEFAULTS.field.max_reaction_ms,
        help="Field test response window in ms, 800-5000 (default: %(default)s).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Contrast plate seed; reuse it to replay the same plate sequence.",
    )
    parser.add_argument(
        "--plate-scale",
        type=float,
        default=DEFAULTS.contrast.plate_scale,
        help="Scale factor for contrast plates on this screen (default: %(default)s).",
    )
    parser.add_argument(
        "--skip-scale-preview",
        action="store_true",
        help="Use --plate-scale as is instead of sizing the plates on an eye chart first.",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=DEFAULTS.gaze.duration_s,
        help="Eye movement test duration in seconds (default: %(default)s).",
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=DEFAULTS.camera_index,
        help="Webcam index for the eye movement test (default: %(default)s).",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path(DEFAULTS.results_directory),
        help="Folder where CSV/JSON/pickle outputs will be saved (default: %(default)s).",
    )
    parser.add_argument(
        "--score-file",
        type=Path,
        default=Path(DEFAULTS.score_file) if DEFAULTS.score_file else None,
        help="JSON file keeping the latest score of each test (default: %(default)s).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Run in a window instead of full screen.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: %(default)s).",
    )
    parser.add_argument(
        "--show-scores",
        action="store_true",
        help="Print the stored scores and exit.",
    )
    parser.add_argument(
        "--reset-scores",
        action="store_true",
        help="Clear the stored scores and exit.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help=(
            "Print the session configuration and the contrast plate schedule for the "
            "seed, then exit without launching PsychoPy."
        ),
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ScreeningConfig:
    """Translate parsed options into a :class:`ScreeningConfig`."""

    return ScreeningConfig(
        tests=tuple(args.tests),
        results_directory=str(args.data_dir),
        score_file=str(args.score_file) if args.score_file else None,
        camera_index=args.camera,
        debug_mode=args.debug,
        field=FieldTestConfig(total_trials=args.trials, max_reaction_ms=args.max_reaction_ms),
        contrast=ContrastTestConfig(
            seed=args.seed,
            plate_scale=args.plate_scale,
            preview_scale=not args.skip_scale_preview,
        ),
        gaze=GazeTrackerConfig(duration_s=args.duration),
    )


def main(argv: list[str] | None = None) -> int:
    """Parse command line options and run the requested action."""

    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    if args.reset_scores:
        ScoreBook(config.score_file).reset()
        print("Stored scores cleared.")
        return 0
    if args.show_scores:
        print_scores(ScoreBook(config.score_file))
        return 0
    if args.dry_run:
        perform_dry_run(config)
        return 0

    from .experiment import VisionScreeningExperiment

    VisionScreeningExperiment(config).run()
    return 0


def print_scores(book: ScoreBook) -> None:
    for kind, row in book.summary().items():
        value = row["value"] if row["value"] is not None else "not set"
        line = f"{kind:<9}: {value}"
        if row["severity"]:
            line += f" ({row['severity']} risk) {row['recommendation']}"
        print(line)


def perform_dry_run(config: ScreeningConfig) -> None:
    """Print the configuration and plate schedule, then exit."""

    selector = PlateSelector(config.contrast.seed)
    print(f"Dry-run: tests={','.join(config.tests)}")
    print(
        f"  field    : {config.field.total_trials} trials, "
        f"{config.field.max_reaction_ms} ms window"
    )
    print(
        f"  contrast : {config.contrast.total_trials} trials, start level "
        f"{config.contrast.start_level}, seed {selector.seed}"
    )
    print(
        f"  gaze     : {config.gaze.duration_s:.1f} s, calibration "
        f"{config.gaze.calibration_frames} frames, camera {config.camera_index}"
    )
    print("Plate schedule per constant level (trial order):")
    for level in range(MIN_LEVEL, MAX_LEVEL + 1):
        plates = selector.schedule(level, config.contrast.total_trials)
        labels = " ".join(
            f"{p.plate.kind[0]}:{p.plate.expected_answer}@{p.effective_value:.2f}" for p in plates
        )
        print(f"  [{level}] {labels}")
    print("Stored scores:")
    print_scores(ScoreBook(config.score_file))
    print("Dry-run complete.")


if __name__ == "__main__":  # pragma: no cover - module level CLI hook
    sys.exit(main(sys.argv[1:]))
