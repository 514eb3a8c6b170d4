import pytest

from vision_screen.config import ContrastTestConfig
from vision_screen.contrast_test import AdaptivePlateEngine, StaircaseState
from vision_screen.plates import PlateSelector


def make_engine(**config):
    results = []
    engine = AdaptivePlateEngine(results.append, config=ContrastTestConfig(**config))
    return engine, results


def answer(engine, correct):
    plate = engine.current_plate.plate
    return engine.submit(plate.expected_answer if correct else "nope")


def test_six_of_nine_correct_scores_seven():
    engine, results = make_engine(seed=11)
    engine.start()
    for correct in [True] * 6 + [False] * 3:
        answer(engine, correct)

    assert len(results) == 1
    result = results[0]
    assert result.correct_count == 6
    assert result.total_trials == 9
    assert result.score == 7
    assert result.seed == 11
    assert len(result.history) == 9
    assert not engine.running


def test_level_moves_one_step_per_answer():
    engine, _ = make_engine(seed=3)
    engine.start()
    assert engine.level == 4
    answer(engine, True)
    assert engine.level == 5
    answer(engine, False)
    assert engine.level == 4
    answer(engine, False)
    assert engine.level == 3


def test_level_floor_holds_at_zero():
    engine, _ = make_engine(seed=3, start_level=0)
    engine.start()
    for _ in range(3):
        answer(engine, False)
        assert engine.level == 0


def test_staircase_ceiling():
    state = StaircaseState(level=8)
    assert state.update(True) == 8
    assert state.update(False) == 7


def test_response_records_level_it_was_answered_at():
    engine, _ = make_engine(seed=5)
    engine.start()
    response = answer(engine, True)
    assert response.correct
    assert response.level == 4
    assert engine.history == (response,)


def test_blank_answer_keeps_the_same_plate():
    engine, _ = make_engine(seed=8)
    first = engine.start()
    assert engine.submit("   ") is None
    assert engine.submit("") is None
    assert engine.current_plate == first
    assert engine.progress().trial_index == 0


def test_next_plate_follows_trial_index_and_level():
    engine, _ = make_engine(seed=21)
    engine.start()
    answer(engine, True)
    expected = PlateSelector(21).select(1, 5)
    assert engine.current_plate == expected


def test_same_seed_replays_the_same_plates():
    sequences = []
    for _ in range(2):
        engine, _ = make_engine(seed=99)
        engine.start()
        shown = []
        for correct in [True, False, True, True, False, True, False, False, True]:
            shown.append(engine.current_plate)
            answer(engine, correct)
        sequences.append(shown)
    assert sequences[0] == sequences[1]


def test_submit_outside_a_session_raises():
    engine, _ = make_engine(seed=1)
    with pytest.raises(RuntimeError):
        engine.submit("12")
    engine.start()
    for _ in range(9):
        answer(engine, True)
    with pytest.raises(RuntimeError):
        engine.submit("12")


def test_start_twice_raises():
    engine, _ = make_engine(seed=1)
    engine.start()
    with pytest.raises(RuntimeError):
        engine.start()


def test_abort_produces_no_result():
    engine, results = make_engine(seed=1)
    engine.start()
    answer(engine, True)
    engine.abort()
    assert results == []
    assert engine.current_plate is None


@pytest.mark.parametrize("options", [{"start_level": 9}, {"total_trials": 0}, {"plate_scale": 0}])
def test_invalid_config_rejected(options):
    with pytest.raises(ValueError):
        ContrastTestConfig(**options)
