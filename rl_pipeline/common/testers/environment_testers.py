from __future__ import annotations

from typing import Any, Callable, List, Tuple

import gymnasium as gym
import numpy as np

from rl_pipeline.common.environments.gym_env import GymEnvironment, make_gym_environment, space_spec
from rl_pipeline.common.trajectories.step_kind import StepKind
from rl_pipeline.common.testers.test_harness import ScriptedEnvironment
from rl_pipeline.common.testers.test_utils import (
    assert_eq,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
)


def test_space_spec():
    box = gym.spaces.Box(low=-1.0, high=1.0, shape=(2, 3), dtype=np.float32)
    assert_eq(space_spec(box, gym.spaces.Discrete(4)), (6, "discrete", 4))
    assert_eq(space_spec(box, gym.spaces.Box(-1.0, 1.0, shape=(2,), dtype=np.float32)), (6, "continuous", 2))
    assert_raises(TypeError, lambda: space_spec(gym.spaces.Discrete(3), gym.spaces.Discrete(2)))
    assert_raises(TypeError, lambda: space_spec(box, gym.spaces.MultiBinary(3)))


def test_gym_environment_reset_and_step():
    env = make_gym_environment("CartPole-v1", num_envs=2, seed=0)
    try:
        first = env.current_step()
        assert_eq(first.kind.tolist(), [int(StepKind.FIRST)] * 2)
        assert_shape(first.observation, (2, 4))
        assert_eq(first.observation.dtype, np.float32)

        nxt = env.step(np.array([0, 1]))
        assert_eq(nxt.kind.tolist(), [int(StepKind.TRANSITION)] * 2)
        assert_eq(nxt.reward.tolist(), [1.0, 1.0])
        assert_raises(ValueError, lambda: env.step(np.array([0])))
    finally:
        env.close()


def test_gym_environment_reports_last_then_first():
    env = make_gym_environment("CartPole-v1", num_envs=1, seed=0)
    try:
        kinds = []
        for _ in range(600):
            step = env.step(np.array([0]))
            kinds.append(int(step.kind[0]))
            if kinds[-1] == int(StepKind.FIRST):
                break
        assert_eq(kinds[-2:], [int(StepKind.LAST), int(StepKind.FIRST)])
        assert_eq(float(env.current_step().reward[0]), 0.0)
    finally:
        env.close()


def test_gym_environment_seed_is_reproducible():
    a = make_gym_environment("CartPole-v1", num_envs=2, seed=3)
    b = make_gym_environment("CartPole-v1", num_envs=2, seed=3)
    try:
        assert_true(np.allclose(a.current_step().observation, b.current_step().observation))
        assert_true(not np.allclose(a.current_step().observation[0], a.current_step().observation[1]))
    finally:
        a.close()
        b.close()


def test_make_gym_environment_rejects_bad_arguments():
    assert_raises(ValueError, lambda: make_gym_environment("CartPole-v1", num_envs=0))
    assert_raises(ValueError, lambda: GymEnvironment([]))


def test_scripted_environment_matches_contract():
    env = ScriptedEnvironment([2])
    kinds = [int(env.step(np.zeros(1)).kind[0]) for _ in range(4)]
    assert_eq(kinds, [int(StepKind.TRANSITION), int(StepKind.LAST), int(StepKind.FIRST), int(StepKind.TRANSITION)])


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("space_spec", test_space_spec),
    ("gym_environment_reset_and_step", test_gym_environment_reset_and_step),
    ("gym_environment_reports_last_then_first", test_gym_environment_reports_last_then_first),
    ("gym_environment_seed_is_reproducible", test_gym_environment_seed_is_reproducible),
    ("make_gym_environment_rejects_bad_arguments", test_make_gym_environment_rejects_bad_arguments),
    ("scripted_environment_matches_contract", test_scripted_environment_matches_contract),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="environments")


if __name__ == "__main__":
    raise SystemExit(main())
