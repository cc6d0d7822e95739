from __future__ import annotations

from typing import Any, Callable, List, Tuple

import numpy as np

from rl_pipeline.common.metrics.episode_metrics import AverageEpisodeLength, AverageEpisodeReward, TotalCumulativeReward
from rl_pipeline.common.trajectories.step_kind import STEP_KIND_DTYPE, StepKind
from rl_pipeline.common.trajectories.trajectory import Trajectory
from rl_pipeline.common.testers.test_utils import (
    assert_close,
    assert_eq,
    assert_raises,
    run_tests,
)

F, M, L = int(StepKind.FIRST), int(StepKind.TRANSITION), int(StepKind.LAST)


def _row(kinds: List[int], rewards: List[float]) -> Trajectory:
    B = len(kinds)
    return Trajectory(
        step_kind=np.asarray(kinds, dtype=STEP_KIND_DTYPE),
        observation=np.zeros((B, 1), dtype=np.float32),
        action=np.zeros((B,), dtype=np.int64),
        reward=np.asarray(rewards, dtype=np.float32),
    )


def _feed(metric, rows: List[Trajectory]) -> None:
    for r in rows:
        metric(r)


# lane 0: episode of 2 actions (reward 3), reset, then 1 action (reward 5)
# lane 1: a 4-action episode still running
_ROWS = [
    _row([M, M], [1.0, 1.0]),
    _row([L, M], [2.0, 1.0]),
    _row([F, M], [0.0, 1.0]),
    _row([L, M], [5.0, 1.0]),
]


def test_average_episode_reward():
    m = AverageEpisodeReward(2)
    assert_raises(RuntimeError, m.value)
    _feed(m, _ROWS)
    assert_eq(m.episode_count, 2)
    assert_close(m.value(), (3.0 + 5.0) / 2.0)


def test_average_episode_length_skips_reset_rows():
    m = AverageEpisodeLength(2)
    _feed(m, _ROWS)
    assert_close(m.value(), (2.0 + 1.0) / 2.0)


def test_total_cumulative_reward():
    m = TotalCumulativeReward(2)
    assert_close(m.value(), 0.0)
    _feed(m, _ROWS)
    assert_close(m.value(), 12.0)
    m.reset()
    assert_close(m.value(), 0.0)


def test_windowed_metric_keeps_last_episodes():
    m = AverageEpisodeReward(1, buffer_size=2)
    for r in (1.0, 2.0, 3.0):
        m(_row([L], [r]))
    assert_eq(m.episode_count, 2)
    assert_close(m.value(), 2.5)


def test_metric_rejects_wrong_lane_count():
    m = AverageEpisodeReward(3)
    assert_raises(ValueError, lambda: m(_row([M, M], [0.0, 0.0])))
    assert_raises(ValueError, lambda: AverageEpisodeReward(0))
    assert_raises(ValueError, lambda: AverageEpisodeLength(1, buffer_size=0))


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("average_episode_reward", test_average_episode_reward),
    ("average_episode_length_skips_reset_rows", test_average_episode_length_skips_reset_rows),
    ("total_cumulative_reward", test_total_cumulative_reward),
    ("windowed_metric_keeps_last_episodes", test_windowed_metric_keeps_last_episodes),
    ("metric_rejects_wrong_lane_count", test_metric_rejects_wrong_lane_count),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="metrics")


if __name__ == "__main__":
    raise SystemExit(main())
