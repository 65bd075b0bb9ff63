import math

import pytest

from stepwise_core.steps.normalize import looks_uniform, normalize_step_timings, parse_time
from stepwise_core.steps.types import RawStep, TimedStep


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (75, 75.0),
        (12.5, 12.5),
        ("12.5", 12.5),
        ("1:15", 75.0),
        ("01:02:03", 3723.0),
        (" 0:07 ", 7.0),
    ],
)
def test_parse_time_accepts_numbers_and_clock_strings(value, expected):
    assert parse_time(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", [None, "", "soon", True, float("nan"), float("inf")])
def test_parse_time_rejects_unusable_values(value):
    assert parse_time(value) is None


def _assert_well_formed(steps: list[TimedStep], total: float) -> None:
    assert steps
    previous_end = 0.0
    for step in steps:
        assert 0.0 <= step.start < step.end <= total
        assert step.start >= previous_end - 1e-9
        previous_end = step.end


def test_normalize_sorts_and_infers_missing_ends():
    steps = normalize_step_timings(
        [
            RawStep("Second", "0:10", "0:20"),
            RawStep("First", 0, None),
            RawStep("Third", 22, None),
        ],
        30.0,
    )
    assert [(s.text, s.start, s.end) for s in steps] == [
        ("First", 0.0, 10.0),
        ("Second", 10.0, 20.0),
        ("Third", 22.0, 30.0),
    ]


def test_normalize_resolves_overlaps_and_clamps():
    steps = normalize_step_timings(
        [
            RawStep("a", -5, 12),
            RawStep("b", 10, 20),
            RawStep("c", 18, 99),
        ],
        30.0,
    )
    assert [(s.start, s.end) for s in steps] == [(0.0, 12.0), (12.0, 20.0), (20.0, 30.0)]
    _assert_well_formed(steps, 30.0)


def test_normalize_folds_zero_length_steps_into_neighbours():
    steps = normalize_step_timings(
        [
            RawStep("Open", 0, 10),
            RawStep("quickly", 10, 10),
            RawStep("Close", 10, 20),
        ],
        20.0,
    )
    assert [s.text for s in steps] == ["Open quickly", "Close"]
    _assert_well_formed(steps, 20.0)


def test_normalize_carries_leading_empty_step_forward():
    steps = normalize_step_timings(
        [RawStep("Intro", 5, 2), RawStep("Work", 10, 15)],
        20.0,
    )
    assert len(steps) == 1
    assert steps[0].text == "Intro Work"
    assert (steps[0].start, steps[0].end) == (10.0, 15.0)


def test_normalize_never_returns_empty_for_degenerate_input():
    steps = normalize_step_timings(
        [RawStep("a", 50, 60), RawStep("b", 70, 80)],
        10.0,
    )
    assert steps == [TimedStep("a b", 0.0, 10.0)]


def test_normalize_rejects_non_positive_duration():
    with pytest.raises(ValueError):
        normalize_step_timings([RawStep("a", 0, 1)], 0)


def test_normalize_output_invariants_hold_for_noisy_input():
    raw = [
        RawStep(f"step {index}", start, end)
        for index, (start, end) in enumerate(
            [
                (3, 1),
                ("0:04", "0:09"),
                (8.5, None),
                ("bad", 12),
                (40, 41),
                (9, 9.0005),
                (15, "0:25"),
            ]
        )
    ]
    total = 30.0
    steps = normalize_step_timings(raw, total)
    _assert_well_formed(steps, total)
    assert all(step.text for step in steps)
    assert all(math.isfinite(step.start) and math.isfinite(step.end) for step in steps)


def test_looks_uniform_detects_even_edge_to_edge_windows():
    steps = [TimedStep("a", 0, 8), TimedStep("b", 8, 16), TimedStep("c", 16, 24)]
    assert looks_uniform(steps, 24.0)


def test_looks_uniform_false_for_uneven_or_single_steps():
    uneven = [TimedStep("a", 0, 4), TimedStep("b", 4, 9), TimedStep("c", 9, 14)]
    assert not looks_uniform(uneven, 14.0)
    assert not looks_uniform([TimedStep("a", 0, 14)], 14.0)
