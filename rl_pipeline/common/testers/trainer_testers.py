from __future__ import annotations

import os
from typing import Any, Callable, List, Tuple

from rl_pipeline.baselines.ppo import ppo
from rl_pipeline.common.loggers import Logger
from rl_pipeline.common.policies.on_policy_algorithm import OnPolicyAlgorithm
from rl_pipeline.common.trainers import Trainer
from rl_pipeline.common.testers.test_harness import MemoryWriter, ScriptedEnvironment
from rl_pipeline.common.testers.test_utils import (
    assert_eq,
    assert_in,
    assert_raises,
    assert_true,
    mk_tmp_dir,
    rm_tmp_dir,
    run_tests,
    seed_all,
)


def _algo() -> OnPolicyAlgorithm:
    seed_all(0)
    return ppo(obs_dim=3, action_dim=2, hidden_sizes=(8,), epoch_count=2, seed=0)


def test_trainer_rejects_bad_arguments():
    env = ScriptedEnvironment([3])
    assert_raises(ValueError, lambda: Trainer(algo=_algo(), env=env, iterations=0, max_steps=4))
    assert_raises(ValueError, lambda: Trainer(algo=_algo(), env=env, iterations=2))


def test_trainer_train_logs_every_iteration():
    tmp = mk_tmp_dir()
    try:
        mem = MemoryWriter()
        logger = Logger(log_dir=tmp, exp_name="trainer", writers=[mem], console_every=0)
        algo = _algo()
        trainer = Trainer(
            algo=algo,
            env=ScriptedEnvironment([3, 4]),
            logger=logger,
            iterations=3,
            max_steps=8,
            show_progress=False,
        )
        last = trainer.train()

        assert_eq(trainer.iteration, 3)
        assert_eq(len(trainer.history), 3)
        assert_eq(len(mem.rows), 3)
        assert_eq(mem.rows[-1]["step"], float(algo.total_steps))
        for k in (
            "train/loss/total",
            "train/stats/kl_beta",
            "rollout/steps",
            "rollout/total_steps",
            "rollout/episode_reward_mean",
            "rollout/episode_length_mean",
            "sys/iteration_seconds",
        ):
            assert_in(k, last)
        assert_true(3.0 <= last["rollout/episode_reward_mean"] <= 4.0)
        assert_true(3.0 <= last["rollout/episode_length_mean"] <= 4.0)
        assert_eq(algo.core.update_calls, 3)
        logger.close()
    finally:
        rm_tmp_dir(tmp)


def test_trainer_log_every_skips_iterations():
    tmp = mk_tmp_dir()
    try:
        mem = MemoryWriter()
        logger = Logger(log_dir=tmp, exp_name="trainer", writers=[mem], console_every=0)
        trainer = Trainer(
            algo=_algo(),
            env=ScriptedEnvironment([3]),
            logger=logger,
            iterations=3,
            max_steps=4,
            log_every=2,
            show_progress=False,
        )
        trainer.train()
        assert_eq(len(mem.rows), 1)
    finally:
        rm_tmp_dir(tmp)


def test_trainer_without_episodes_omits_episode_means():
    trainer = Trainer(algo=_algo(), env=ScriptedEnvironment([1000]), iterations=1, max_steps=4, show_progress=False)
    last = trainer.train()
    assert_true("rollout/episode_reward_mean" not in last)
    assert_eq(last["rollout/total_reward"], 4.0)


def test_trainer_seed_resets_env():
    env = ScriptedEnvironment([3])
    Trainer(algo=_algo(), env=env, iterations=1, max_steps=2, seed=7, show_progress=False)
    assert_eq(env.reset_seeds[-1], 7)


def test_trainer_save_and_load():
    tmp = mk_tmp_dir()
    try:
        trainer = Trainer(algo=_algo(), env=ScriptedEnvironment([3]), iterations=2, max_steps=4, show_progress=False)
        trainer.train()
        path = trainer.save(os.path.join(tmp, "trainer"))
        assert_true(path.endswith(".pt"))

        other = Trainer(algo=_algo(), env=ScriptedEnvironment([3]), iterations=4, max_steps=4, show_progress=False)
        other.load(path)
        assert_eq(other.iteration, 2)
        assert_eq(other.algo.total_steps, trainer.algo.total_steps)
        assert_eq(other.algo.core.update_calls, 2)

        other.train()
        assert_eq(other.iteration, 4)
    finally:
        rm_tmp_dir(tmp)


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("trainer_rejects_bad_arguments", test_trainer_rejects_bad_arguments),
    ("trainer_train_logs_every_iteration", test_trainer_train_logs_every_iteration),
    ("trainer_log_every_skips_iterations", test_trainer_log_every_skips_iterations),
    ("trainer_without_episodes_omits_episode_means", test_trainer_without_episodes_omits_episode_means),
    ("trainer_seed_resets_env", test_trainer_seed_resets_env),
    ("trainer_save_and_load", test_trainer_save_and_load),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="trainer")


if __name__ == "__main__":
    raise SystemExit(main())
