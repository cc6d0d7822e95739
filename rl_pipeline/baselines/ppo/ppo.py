from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple, Union

import torch as th
import torch.nn as nn

from rl_pipeline.common.estimators.advantages import build_advantage_function
from rl_pipeline.common.networks.actor_critic import CategoricalActorCriticNetwork, GaussianActorCriticNetwork
from rl_pipeline.common.policies.on_policy_algorithm import OnPolicyAlgorithm

from .config import KLPenaltyConfig, PPOConfig, ValueLossConfig
from .core import PPOCore


def ppo(
    *,
    # -------------------------------------------------------------------------
    # Environment I/O sizes
    # -------------------------------------------------------------------------
    obs_dim: int,
    action_dim: int,
    action_type: str = "discrete",
    device: Union[str, th.device] = "cpu",
    # -------------------------------------------------------------------------
    # Network hyperparameters (ignored when `network` is given)
    # -------------------------------------------------------------------------
    network: Optional[nn.Module] = None,
    hidden_sizes: Tuple[int, ...] = (64, 64),
    activation_fn: Any = nn.Tanh,
    init_type: str = "orthogonal",
    log_std_init: float = 0.0,
    # -------------------------------------------------------------------------
    # Advantage estimation
    # -------------------------------------------------------------------------
    advantage: str = "gae",
    gamma: float = 0.99,
    lam: float = 0.95,
    # -------------------------------------------------------------------------
    # PPO update hyperparameters
    # -------------------------------------------------------------------------
    clip_epsilon: Optional[float] = 0.2,
    log_prob_clip: Optional[float] = None,
    kl_penalty: Optional[Union[KLPenaltyConfig, Mapping[str, Any]]] = None,
    value_loss_weight: float = 0.5,
    value_clip_threshold: Optional[float] = None,
    entropy_weight: float = 0.0,
    epoch_count: int = 10,
    max_grad_norm: Optional[float] = 0.5,
    use_td_lambda_return: bool = False,
    advantage_normalization: str = "batch",
    # -------------------------------------------------------------------------
    # Optimizer / scheduler
    # -------------------------------------------------------------------------
    optim_name: str = "adam",
    lr: float = 3e-4,
    weight_decay: float = 0.0,
    optim_kwargs: Optional[Mapping[str, Any]] = None,
    sched_name: str = "none",
    total_steps: int = 0,
    warmup_steps: int = 0,
    min_lr_ratio: float = 0.0,
    step_size: int = 1000,
    sched_gamma: float = 0.99,
    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------
    max_replayed_sequence_length: int = 1000,
    seed: Optional[int] = None,
) -> OnPolicyAlgorithm:
    """
    Build a PPO :class:`~rl_pipeline.common.policies.on_policy_algorithm.OnPolicyAlgorithm`.

    Wires together the layers of the on-policy stack:

    1) **Network**: an MLP actor-critic (categorical for ``action_type="discrete"``,
       diagonal Gaussian for ``"continuous"``), unless ``network`` is supplied.
    2) **Core** (:class:`PPOCore`): advantage estimation, clipped surrogate,
       KL penalty, value loss and entropy bonus over ``epoch_count`` epochs.
    3) **Algorithm** (:class:`OnPolicyAlgorithm`): collection into the replay
       buffer, one core update per call, buffer reset.

    Parameters
    ----------
    obs_dim : int
        Flat observation dimension.
    action_dim : int
        Number of actions (discrete) or action vector size (continuous).
    action_type : {"discrete", "continuous"}, default="discrete"
    device : str | torch.device, default="cpu"
    network : nn.Module, optional
        Custom actor-critic network following the ``ActorCriticOutput`` contract.
    hidden_sizes, activation_fn, init_type, log_std_init
        Default network knobs.
    advantage : {"gae", "empirical", "returns"}, default="gae"
    gamma, lam : float
        Discount and GAE trace decay.
    clip_epsilon, log_prob_clip, entropy_weight, epoch_count, max_grad_norm,
    use_td_lambda_return, advantage_normalization
        See :class:`PPOConfig`.
    kl_penalty : KLPenaltyConfig or mapping, optional
        A mapping is expanded into :class:`KLPenaltyConfig`.
    value_loss_weight, value_clip_threshold : see :class:`ValueLossConfig`.
    optim_name, lr, weight_decay, optim_kwargs, sched_name, total_steps,
    warmup_steps, min_lr_ratio, step_size, sched_gamma
        Optimizer and scheduler. The scheduler steps once per epoch.
    max_replayed_sequence_length : int, default=1000
        Rows per lane of the collection buffer.
    seed : int, optional
        Buffer sampling seed.

    Returns
    -------
    OnPolicyAlgorithm
    """
    # -------------------------------------------------------------------------
    # 1) Network
    # -------------------------------------------------------------------------
    if network is None:
        kind = str(action_type).lower().strip()
        if kind == "discrete":
            network = CategoricalActorCriticNetwork(
                int(obs_dim),
                int(action_dim),
                hidden_sizes=tuple(hidden_sizes),
                activation_fn=activation_fn,
                init_type=str(init_type),
            )
        elif kind == "continuous":
            network = GaussianActorCriticNetwork(
                int(obs_dim),
                int(action_dim),
                hidden_sizes=tuple(hidden_sizes),
                activation_fn=activation_fn,
                log_std_init=float(log_std_init),
                init_type=str(init_type),
            )
        else:
            raise ValueError(f"action_type must be 'discrete' or 'continuous', got {action_type!r}")

    # -------------------------------------------------------------------------
    # 2) Config + core
    # -------------------------------------------------------------------------
    if kl_penalty is not None and not isinstance(kl_penalty, KLPenaltyConfig):
        kl_penalty = KLPenaltyConfig(**dict(kl_penalty))

    config = PPOConfig(
        clip_epsilon=clip_epsilon,
        log_prob_clip=log_prob_clip,
        kl_penalty=kl_penalty,
        value_loss=ValueLossConfig(weight=value_loss_weight, clip_threshold=value_clip_threshold),
        entropy_weight=entropy_weight,
        epoch_count=epoch_count,
        max_grad_norm=max_grad_norm,
        use_td_lambda_return=use_td_lambda_return,
        advantage_normalization=str(advantage_normalization).lower().strip(),
    )

    core = PPOCore(
        network=network,
        config=config,
        advantage_function=build_advantage_function(advantage, gamma=gamma, lam=lam),
        device=device,
        optim_name=str(optim_name),
        lr=float(lr),
        weight_decay=float(weight_decay),
        optim_kwargs=optim_kwargs,
        sched_name=str(sched_name),
        total_steps=int(total_steps),
        warmup_steps=int(warmup_steps),
        min_lr_ratio=float(min_lr_ratio),
        step_size=int(step_size),
        sched_gamma=float(sched_gamma),
    )

    # -------------------------------------------------------------------------
    # 3) Algorithm
    # -------------------------------------------------------------------------
    return OnPolicyAlgorithm(
        core=core,
        max_replayed_sequence_length=int(max_replayed_sequence_length),
        device=device,
        seed=seed,
    )
