import gymnasium as gym

from rl_pipeline.baselines.ppo import ppo
from rl_pipeline.common.environments import make_gym_environment, space_spec
from rl_pipeline.common.loggers import build_logger
from rl_pipeline.common.trainers import Trainer

# -----------------------------
# Env
# -----------------------------
ENV_ID = "CartPole-v1"
NUM_ENVS = 4
SEED = 0


def make_train_env():
    return make_gym_environment(ENV_ID, num_envs=NUM_ENVS, seed=SEED)


def main():
    # -----------------------------
    # Infer dims from a probe env
    # -----------------------------
    _probe_env = gym.make(ENV_ID)
    obs_dim, action_type, action_dim = space_spec(_probe_env.observation_space, _probe_env.action_space)
    _probe_env.close()

    device = "cpu"  # or "cuda"

    # -----------------------------
    # Build algo + trainer
    # -----------------------------
    algo = ppo(
        obs_dim=obs_dim,
        action_dim=action_dim,
        action_type=action_type,
        device=device,
        lr=3e-4,
        epoch_count=10,
        entropy_weight=0.01,
        max_replayed_sequence_length=256,
    )

    env = make_train_env()
    with build_logger(log_dir="./runs", exp_name="ppo_cartpole", console_every=10) as logger:
        logger.dump_config(
            {
                "env_id": ENV_ID,
                "num_envs": NUM_ENVS,
                "seed": SEED,
                "ppo": algo.core.config.to_dict(),
                "advantage": {
                    "kind": algo.core.advantage_function.kind.value,
                    "gamma": algo.core.advantage_function.gamma,
                    "lam": algo.core.advantage_function.lam,
                },
            }
        )
        trainer = Trainer(
            algo=algo,
            env=env,
            logger=logger,
            iterations=200,
            max_steps=NUM_ENVS * 128,
            seed=SEED,
        )
        trainer.train()
        trainer.save(f"{logger.run_dir}/ppo_cartpole.pt")
    env.close()


if __name__ == "__main__":
    main()
