from __future__ import annotations

from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th

from rl_pipeline.common.trajectories.step_kind import (
    STEP_KIND_DTYPE,
    StepKind,
    complete_episode_mask,
    episode_count,
    is_first,
    is_last,
    not_last,
)
from rl_pipeline.common.trajectories.trajectory import Trajectory
from rl_pipeline.common.testers.test_harness import make_row, make_trajectory
from rl_pipeline.common.testers.test_utils import (
    assert_allclose,
    assert_eq,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
)

F, M, L = int(StepKind.FIRST), int(StepKind.TRANSITION), int(StepKind.LAST)


def test_step_kind_values_and_full():
    assert_eq([F, M, L], [0, 1, 2])
    arr = StepKind.full(StepKind.LAST, 3)
    assert_eq(arr.dtype, np.dtype(STEP_KIND_DTYPE))
    assert_eq(arr.tolist(), [2, 2, 2])


def test_step_kind_masks_numpy_and_torch():
    kinds = np.array([F, M, L, F])
    assert_eq(is_first(kinds).tolist(), [True, False, False, True])
    assert_eq(is_last(kinds).tolist(), [False, False, True, False])
    assert_allclose(not_last(kinds), [1, 1, 0, 1])

    tk = th.as_tensor(kinds)
    m = not_last(tk)
    assert_eq(m.dtype, th.float32)
    assert_allclose(m, [1, 1, 0, 1])
    assert_eq(episode_count(tk), 1)
    assert_eq(episode_count(np.array([[L, L], [M, L]])), 3)


def test_complete_episode_mask_excludes_trailing_partial_episode():
    kinds = np.array([[M, M], [L, M], [F, L], [M, F]])
    mask = complete_episode_mask(kinds)
    assert_eq(mask[:, 0].tolist(), [True, True, False, False])
    assert_eq(mask[:, 1].tolist(), [True, True, True, False])
    tmask = complete_episode_mask(th.as_tensor(kinds))
    assert_eq(tmask.numpy().tolist(), mask.tolist())


def test_trajectory_shape_validation():
    ok = make_trajectory(4, 2)
    assert_eq(ok.batch_shape, (4, 2))
    assert_eq(len(ok), 4)
    assert_raises(
        ValueError,
        lambda: Trajectory(
            step_kind=np.zeros((4, 2), dtype=np.int64),
            observation=np.zeros((4, 2, 3)),
            action=np.zeros((4, 2)),
            reward=np.zeros((4, 3)),
        ),
    )
    assert_raises(
        ValueError,
        lambda: Trajectory(
            step_kind=np.zeros((4, 2), dtype=np.int64),
            observation=np.zeros((3, 2, 3)),
            action=np.zeros((4, 2)),
            reward=np.zeros((4, 2)),
        ),
    )


def test_trajectory_stack_builds_time_major_record():
    rows = [make_row(2, float(i)) for i in range(5)]
    traj = Trajectory.stack(rows)
    assert_eq(traj.batch_shape, (5, 2))
    assert_shape(traj.observation, (5, 2, 2))
    assert_allclose(traj.observation[:, 0, 0], np.arange(5))
    assert_true(traj.policy_state is None)
    assert_raises(ValueError, lambda: Trajectory.stack([]))


def test_trajectory_stack_rejects_mixed_optional_fields():
    a = make_row(2, 0.0)
    b = Trajectory(
        step_kind=a.step_kind,
        observation=a.observation,
        action=a.action,
        reward=a.reward,
        policy_state=np.zeros((2, 1), dtype=np.float32),
    )
    assert_raises(ValueError, lambda: Trajectory.stack([a, b]))


def test_trajectory_allocate_gather_scatter():
    row = make_row(2, 7.0)
    storage = row.allocate(6)
    assert_shape(storage.observation, (6, 2))
    assert_eq(storage.action.dtype, row.action.dtype)

    storage.scatter_update(np.array([1, 4]), row)
    got = storage.gather(np.array([[1], [4]]))
    assert_shape(got.observation, (2, 1, 2))
    assert_allclose(got.observation[:, 0, 0], [7.0, 7.0])
    assert_allclose(storage.observation[0], [0.0, 0.0])


def test_trajectory_scatter_rejects_presence_mismatch():
    row = make_row(2, 1.0)
    storage = row.allocate(4)
    with_state = Trajectory(
        step_kind=row.step_kind,
        observation=row.observation,
        action=row.action,
        reward=row.reward,
        policy_state=np.zeros((2, 1), dtype=np.float32),
    )
    assert_raises(ValueError, lambda: storage.scatter_update(np.array([0, 1]), with_state))


def test_trajectory_to_tensors_keeps_dtypes():
    traj = make_trajectory(3, 2).to_tensors("cpu")
    assert_true(th.is_tensor(traj.observation))
    assert_eq(traj.step_kind.dtype, th.int64)
    assert_eq(traj.action.dtype, th.int64)
    assert_eq(traj.reward.dtype, th.float32)


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("step_kind_values_and_full", test_step_kind_values_and_full),
    ("step_kind_masks_numpy_and_torch", test_step_kind_masks_numpy_and_torch),
    ("complete_episode_mask_excludes_trailing_partial_episode", test_complete_episode_mask_excludes_trailing_partial_episode),
    ("trajectory_shape_validation", test_trajectory_shape_validation),
    ("trajectory_stack_builds_time_major_record", test_trajectory_stack_builds_time_major_record),
    ("trajectory_stack_rejects_mixed_optional_fields", test_trajectory_stack_rejects_mixed_optional_fields),
    ("trajectory_allocate_gather_scatter", test_trajectory_allocate_gather_scatter),
    ("trajectory_scatter_rejects_presence_mismatch", test_trajectory_scatter_rejects_presence_mismatch),
    ("trajectory_to_tensors_keeps_dtypes", test_trajectory_to_tensors_keeps_dtypes),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="trajectories")


if __name__ == "__main__":
    raise SystemExit(main())
