"""
rl_pipeline

Top-level package initializer.

Usage
-----
from rl_pipeline import ppo, Trainer, make_gym_environment

env = make_gym_environment("CartPole-v1", num_envs=4, seed=0)
algo = ppo(obs_dim=4, action_dim=2, action_type="discrete")
Trainer(algo=algo, env=env, iterations=50, max_steps=512).train()
"""

from __future__ import annotations

from .baselines.ppo import PPOConfig, PPOCore, ppo
from .common.buffers import UniformReplayBuffer
from .common.environments import GymEnvironment, make_gym_environment
from .common.loggers import Logger, build_logger
from .common.policies import OnPolicyAlgorithm
from .common.trainers import Trainer
from .common.trajectories import StepKind, Trajectory

__version__ = "0.1.0"

__all__ = [
    "ppo",
    "PPOConfig",
    "PPOCore",
    "UniformReplayBuffer",
    "GymEnvironment",
    "make_gym_environment",
    "Logger",
    "build_logger",
    "OnPolicyAlgorithm",
    "Trainer",
    "StepKind",
    "Trajectory",
]
