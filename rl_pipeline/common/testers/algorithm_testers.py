from __future__ import annotations

import os
from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th

from rl_pipeline.baselines.ppo import PPOConfig, PPOCore, ppo
from rl_pipeline.common.policies.on_policy_algorithm import OnPolicyAlgorithm
from rl_pipeline.common.trajectories.step_kind import StepKind
from rl_pipeline.common.trajectories.trajectory import Trajectory
from rl_pipeline.common.testers.test_harness import CountingRecurrentNetwork, ScriptedEnvironment
from rl_pipeline.common.testers.test_utils import (
    assert_allclose,
    assert_close,
    assert_eq,
    assert_in,
    assert_raises,
    assert_true,
    mk_tmp_dir,
    rm_tmp_dir,
    run_tests,
    seed_all,
)

F, M, L = int(StepKind.FIRST), int(StepKind.TRANSITION), int(StepKind.LAST)


def _make_algo(**kwargs: Any) -> OnPolicyAlgorithm:
    seed_all(0)
    kwargs.setdefault("hidden_sizes", (8,))
    kwargs.setdefault("epoch_count", 2)
    return ppo(obs_dim=3, action_dim=2, seed=0, **kwargs)


def _recurrent_algo(**kwargs: Any) -> Tuple[OnPolicyAlgorithm, CountingRecurrentNetwork]:
    seed_all(0)
    net = CountingRecurrentNetwork(3)
    core = PPOCore(network=net, config=PPOConfig(epoch_count=1), lr=1e-3)
    return OnPolicyAlgorithm(core=core, **kwargs), net


# =============================================================================
# Collection
# =============================================================================
def test_collect_single_episode_rows():
    algo = _make_algo()
    env = ScriptedEnvironment([3])
    steps, episodes = algo.collect(env, max_episodes=1)
    assert_eq((steps, episodes), (2, 1))

    data = algo.buffer.recorded_data()
    assert_eq(data.batch_shape, (3, 1))
    assert_eq(data.step_kind[:, 0].tolist(), [M, M, L])
    assert_allclose(data.reward[:, 0], [1.0, 1.0, 1.0])
    # observation is the one the action was taken from
    assert_allclose(data.observation[:, 0, 0], [0.0, 1.0, 2.0])
    assert_true(data.policy_state is None)


def test_collect_step_budget_counts_non_last_rows():
    algo = _make_algo()
    env = ScriptedEnvironment([2, 3])
    steps, episodes = algo.collect(env, max_steps=6)
    assert_eq((steps, episodes), (6, 2))
    assert_eq(algo.buffer.size, 4)
    assert_eq(algo.total_steps, 6)
    assert_eq(algo.total_episodes, 2)

    data = algo.buffer.recorded_data()
    assert_eq(data.step_kind[:, 0].tolist(), [M, L, F, M])
    assert_eq(data.step_kind[:, 1].tolist(), [M, M, L, F])
    # reset rows carry no reward
    assert_allclose(data.reward[:, 0], [1.0, 1.0, 0.0, 1.0])


def test_collect_episode_budget_stops_first():
    algo = _make_algo()
    env = ScriptedEnvironment([2, 3])
    steps, episodes = algo.collect(env, max_steps=100, max_episodes=2)
    assert_eq((steps, episodes), (4, 2))
    assert_eq(len(env.actions), 3)


def test_collect_requires_a_positive_budget():
    algo = _make_algo()
    env = ScriptedEnvironment([3])
    assert_raises(ValueError, lambda: algo.collect(env))
    assert_raises(ValueError, lambda: algo.collect(env, max_steps=0))
    assert_raises(ValueError, lambda: algo.collect(env, max_episodes=-1))


def test_collect_rejects_changed_batch_size():
    algo = _make_algo()
    algo.collect(ScriptedEnvironment([3, 3]), max_steps=2)
    assert_raises(ValueError, lambda: algo.collect(ScriptedEnvironment([3, 3, 3]), max_steps=2))


def test_collect_keeps_most_recent_window():
    algo = _make_algo(max_replayed_sequence_length=4)
    env = ScriptedEnvironment([100])
    algo.collect(env, max_steps=6)
    data = algo.buffer.recorded_data()
    assert_eq(len(data), 4)
    assert_allclose(data.observation[:, 0, 0], [2.0, 3.0, 4.0, 5.0])


def test_collect_runs_step_callbacks_per_row():
    algo = _make_algo()
    env = ScriptedEnvironment([3, 2])
    rows: List[Trajectory] = []
    algo.collect(env, max_episodes=1, step_callbacks=[rows.append])
    assert_eq(len(rows), 2)
    for r in rows:
        assert_eq(r.batch_shape, (2,))


def test_collect_threads_recurrent_state():
    algo, net = _recurrent_algo()
    env = ScriptedEnvironment([10])
    algo.collect(env, max_steps=3)
    data = algo.buffer.recorded_data()
    assert_true(data.policy_state is not None)
    assert_allclose(data.policy_state[:, 0, 0], [0.0, 1.0, 2.0])

    # state carries over into the next collection call
    algo.buffer.reset()
    algo.collect(env, max_steps=2)
    assert_allclose(algo.buffer.recorded_data().policy_state[:, 0, 0], [3.0, 4.0])

    algo.reset()
    algo.collect(env, max_steps=1)
    assert_allclose(algo.buffer.recorded_data().policy_state[:, 0, 0], [0.0])


# =============================================================================
# Update
# =============================================================================
def test_update_collects_trains_and_clears_buffer():
    algo = _make_algo()
    env = ScriptedEnvironment([4, 5])
    before = [p.detach().clone() for p in algo.network.parameters()]
    metrics = algo.update(env, max_steps=20)
    for k in ("loss/total", "stats/approx_kl", "rollout/steps", "rollout/episodes", "rollout/sequence_length"):
        assert_in(k, metrics)
    assert_true(metrics["rollout/steps"] >= 20.0)
    assert_eq(algo.buffer.size, 0)
    assert_eq(algo.core.update_calls, 1)
    after = list(algo.network.parameters())
    assert_true(any(not th.allclose(a, b) for a, b in zip(before, after)))


def test_update_reports_complete_episode_fraction():
    algo = _make_algo()
    # lane 0 rows [M, L, F, M], lane 1 rows [M, M, L, F]
    metrics = algo.update(ScriptedEnvironment([2, 3]), max_steps=6)
    assert_eq(metrics["rollout/episodes"], 2.0)
    assert_close(metrics["rollout/complete_episode_fraction"], 5.0 / 8.0)


def test_update_initial_state_comes_from_collection():
    algo, net = _recurrent_algo()
    env = ScriptedEnvironment([10])
    algo.collect(env, max_steps=3)
    algo.buffer.reset()
    net.states_seen.clear()
    algo.update(env, max_steps=3)
    # the core replays the trajectory from the state recorded at its first row
    assert_allclose(net.states_seen[-1], th.full((1, 1), 3.0))


def test_update_clears_buffer_when_core_fails():
    algo = _make_algo()
    env = ScriptedEnvironment([1])
    # a single recorded row cannot provide a bootstrap step
    assert_raises(ValueError, lambda: algo.update(env, max_episodes=1))
    assert_eq(algo.buffer.size, 0)


# =============================================================================
# Acting / persistence
# =============================================================================
def test_act_shapes_and_determinism():
    algo = _make_algo()
    obs = np.random.default_rng(0).normal(size=(5, 3)).astype(np.float32)
    a1 = algo.act(obs, deterministic=True)
    a2 = algo.act(obs, deterministic=True)
    assert_eq(a1.shape, (5,))
    assert_eq(a1.tolist(), a2.tolist())
    assert_eq(algo.act(obs).shape, (5,))


def test_save_and_load_roundtrip():
    tmp = mk_tmp_dir()
    try:
        algo = _make_algo()
        algo.update(ScriptedEnvironment([4]), max_steps=8)
        path = algo.save(os.path.join(tmp, "ckpt"))
        assert_true(path.endswith(".pt"))

        other = _make_algo()
        other.load(path)
        for a, b in zip(algo.network.parameters(), other.network.parameters()):
            assert_allclose(a, b)
        assert_eq(other.core.update_calls, 1)

        bad = os.path.join(tmp, "bad.pt")
        th.save({"weights": 1}, bad)
        assert_raises(ValueError, lambda: other.load(bad))
    finally:
        rm_tmp_dir(tmp)


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("collect_single_episode_rows", test_collect_single_episode_rows),
    ("collect_step_budget_counts_non_last_rows", test_collect_step_budget_counts_non_last_rows),
    ("collect_episode_budget_stops_first", test_collect_episode_budget_stops_first),
    ("collect_requires_a_positive_budget", test_collect_requires_a_positive_budget),
    ("collect_rejects_changed_batch_size", test_collect_rejects_changed_batch_size),
    ("collect_keeps_most_recent_window", test_collect_keeps_most_recent_window),
    ("collect_runs_step_callbacks_per_row", test_collect_runs_step_callbacks_per_row),
    ("collect_threads_recurrent_state", test_collect_threads_recurrent_state),
    ("update_collects_trains_and_clears_buffer", test_update_collects_trains_and_clears_buffer),
    ("update_reports_complete_episode_fraction", test_update_reports_complete_episode_fraction),
    ("update_initial_state_comes_from_collection", test_update_initial_state_comes_from_collection),
    ("update_clears_buffer_when_core_fails", test_update_clears_buffer_when_core_fails),
    ("act_shapes_and_determinism", test_act_shapes_and_determinism),
    ("save_and_load_roundtrip", test_save_and_load_roundtrip),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="algorithm")


if __name__ == "__main__":
    raise SystemExit(main())
