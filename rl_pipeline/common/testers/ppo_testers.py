from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple

import numpy as np
import torch as th

from rl_pipeline.baselines.ppo import (
    KLPenaltyConfig,
    PPOConfig,
    PPOCore,
    ValueLossConfig,
    adapt_kl_beta,
    kl_penalty_loss,
    ppo,
    surrogate_objective,
    value_loss,
)
from rl_pipeline.baselines.ppo.core import MIN_KL_BETA
from rl_pipeline.common.estimators.advantages import AdvantageFunction, AdvantageKind
from rl_pipeline.common.estimators.normalizers import NormalizationKind
from rl_pipeline.common.networks.actor_critic import CategoricalActorCriticNetwork, GaussianActorCriticNetwork
from rl_pipeline.common.policies.on_policy_algorithm import OnPolicyAlgorithm
from rl_pipeline.common.trajectories.step_kind import StepKind
from rl_pipeline.common.trajectories.trajectory import Trajectory
from rl_pipeline.common.testers.test_harness import CountingRecurrentNetwork, make_trajectory
from rl_pipeline.common.testers.test_utils import (
    assert_allclose,
    assert_close,
    assert_eq,
    assert_finite,
    assert_in,
    assert_raises,
    assert_true,
    run_tests,
    seed_all,
)


def _make_core(**config_kwargs: Any) -> PPOCore:
    seed_all(0)
    core_kwargs: Dict[str, Any] = {}
    for k in ("lr", "sched_name", "step_size", "sched_gamma"):
        if k in config_kwargs:
            core_kwargs[k] = config_kwargs.pop(k)
    core_kwargs.setdefault("lr", 1e-2)
    net = CategoricalActorCriticNetwork(3, 2, hidden_sizes=(16,))
    return PPOCore(network=net, config=PPOConfig(**config_kwargs), **core_kwargs)


def _snapshot(module: th.nn.Module) -> List[th.Tensor]:
    return [p.detach().clone() for p in module.parameters()]


# =============================================================================
# Loss terms
# =============================================================================
def test_surrogate_objective_is_pessimistic():
    seed_all(0)
    ratio = th.rand(200) * 2.0
    adv = th.randn(200)
    obj = surrogate_objective(ratio, adv, 0.2)
    unclipped = ratio * adv
    clipped = th.clamp(ratio, 0.8, 1.2) * adv
    assert_true(bool((obj <= unclipped + 1e-7).all()))
    assert_true(bool((obj <= clipped + 1e-7).all()))
    assert_allclose(surrogate_objective(ratio, adv, None), unclipped)


def test_surrogate_objective_known_values():
    ratio = th.tensor([1.5, 0.5, 1.5, 0.5])
    adv = th.tensor([1.0, 1.0, -1.0, -1.0])
    obj = surrogate_objective(ratio, adv, 0.2)
    assert_allclose(obj, [1.2, 0.5, -1.5, -0.8])


def test_value_loss_with_and_without_clipping():
    values = th.tensor([1.0, 3.0])
    returns = th.tensor([0.0, 0.0])
    old = th.tensor([0.0, 0.0])
    plain = value_loss(values, returns, old, ValueLossConfig(weight=0.5))
    assert_close(float(plain), 0.5 * (1.0 + 9.0) / 2.0)

    # clipped prediction is closer to the target, so the pessimistic max keeps the unclipped error
    clipped = value_loss(values, returns, old, ValueLossConfig(weight=1.0, clip_threshold=0.5))
    assert_close(float(clipped), (1.0 + 9.0) / 2.0)

    # moving away from the target: clipped error dominates
    values2 = th.tensor([0.1])
    old2 = th.tensor([2.0])
    loss2 = value_loss(values2, th.tensor([0.0]), old2, ValueLossConfig(weight=1.0, clip_threshold=0.5))
    assert_close(float(loss2), 1.5**2)


def test_kl_penalty_loss_terms():
    cfg = KLPenaltyConfig(cutoff_factor=2.0, cutoff_coefficient=1000.0, target=0.01)
    loss = kl_penalty_loss(th.tensor(0.05), 2.0, cfg)
    assert_close(float(loss), 1000.0 * 0.03**2 + 2.0 * 0.05, rtol=1e-5)

    below = kl_penalty_loss(th.tensor(0.015), None, cfg)
    assert_close(float(below), 0.0)

    no_cutoff = KLPenaltyConfig(cutoff_factor=None, initial_beta=None)
    assert_close(float(kl_penalty_loss(th.tensor(5.0), None, no_cutoff)), 0.0)


def test_adapt_kl_beta_band():
    cfg = KLPenaltyConfig(target=0.01, tolerance_factor=1.5, beta_scaling_factor=2.0)
    assert_close(adapt_kl_beta(1.0, 0.001, cfg), 0.5)
    assert_close(adapt_kl_beta(1.0, 0.1, cfg), 2.0)
    assert_close(adapt_kl_beta(1.0, 0.01, cfg), 1.0)
    # band edges are inside the band
    assert_close(adapt_kl_beta(1.0, 0.01 / 1.5, cfg), 1.0)
    assert_close(adapt_kl_beta(1.0, 0.015, cfg), 1.0)
    assert_eq(adapt_kl_beta(MIN_KL_BETA, 0.0, cfg), MIN_KL_BETA)


# =============================================================================
# Config
# =============================================================================
def test_config_validation():
    assert_raises(ValueError, lambda: PPOConfig(epoch_count=0))
    assert_raises(ValueError, lambda: PPOConfig(epoch_count=2.5))
    assert_raises(ValueError, lambda: PPOConfig(clip_epsilon=-0.1))
    assert_raises(ValueError, lambda: PPOConfig(entropy_weight=-1.0))
    assert_raises(ValueError, lambda: PPOConfig(advantage_normalization="minmax"))
    assert_raises(TypeError, lambda: PPOConfig(kl_penalty={"target": 0.01}))
    assert_raises(ValueError, lambda: KLPenaltyConfig(target=0.0))
    assert_raises(ValueError, lambda: KLPenaltyConfig(beta_scaling_factor=-1.0))
    assert_raises(ValueError, lambda: ValueLossConfig(clip_threshold=0.0))


def test_config_defaults_and_to_dict():
    cfg = PPOConfig(advantage_normalization="streaming", kl_penalty=KLPenaltyConfig())
    assert_eq(cfg.advantage_normalization, NormalizationKind.STREAMING)
    assert_true(cfg.kl_penalty.adaptive)
    assert_true(not KLPenaltyConfig(initial_beta=None).adaptive)
    d = cfg.to_dict()
    assert_eq(d["advantage_normalization"], "streaming")
    assert_close(d["kl_penalty"]["target"], 0.01)
    assert_close(d["value_loss"]["weight"], 0.5)


# =============================================================================
# Core
# =============================================================================
def test_core_rejects_td_lambda_without_gae():
    net = CategoricalActorCriticNetwork(3, 2, hidden_sizes=(8,))
    assert_raises(
        ValueError,
        lambda: PPOCore(
            network=net,
            config=PPOConfig(use_td_lambda_return=True),
            advantage_function=AdvantageFunction(AdvantageKind.EMPIRICAL),
        ),
    )


def test_core_update_returns_float_and_changes_params():
    core = _make_core(epoch_count=3)
    before = _snapshot(core.network)
    loss = core.update(make_trajectory(6, 3))
    assert_true(isinstance(loss, float))
    assert_finite(loss)
    after = _snapshot(core.network)
    assert_true(any(not th.allclose(a, b) for a, b in zip(before, after)), "parameters did not change")
    assert_eq(core.update_calls, 1)


def test_core_update_metrics_keys():
    core = _make_core(epoch_count=2, entropy_weight=0.01, kl_penalty=KLPenaltyConfig())
    metrics = core.update_with_metrics(make_trajectory(5, 2))
    for k in (
        "loss/policy",
        "loss/value",
        "loss/kl",
        "loss/entropy",
        "loss/total",
        "stats/approx_kl",
        "stats/clip_frac",
        "stats/entropy",
        "stats/kl_beta",
        "stats/grad_norm",
        "stats/lr",
        "stats/advantage_mean",
        "stats/return_mean",
        "stats/value_mean",
    ):
        assert_in(k, metrics)
        assert_finite(metrics[k])
    assert_true(metrics["stats/approx_kl"] >= 0.0)


def test_core_single_epoch_first_kl_is_zero():
    core = _make_core(epoch_count=1)
    metrics = core.update_with_metrics(make_trajectory(5, 2))
    # the first epoch evaluates the unchanged policy against itself
    assert_close(metrics["stats/approx_kl"], 0.0, atol=1e-6)
    assert_close(metrics["stats/clip_frac"], 0.0)


def test_core_rejects_too_short_trajectory():
    core = _make_core()
    assert_raises(ValueError, lambda: core.update(make_trajectory(1, 2)))


def test_core_kl_beta_shrinks_when_kl_is_below_target():
    core = _make_core(
        epoch_count=2,
        kl_penalty=KLPenaltyConfig(cutoff_factor=None, initial_beta=1.0, target=10.0, beta_scaling_factor=1.5),
    )
    assert_close(core.kl_beta, 1.0)
    metrics = core.update_with_metrics(make_trajectory(6, 2))
    assert_close(core.kl_beta, 1.0 / 1.5)
    assert_close(metrics["stats/kl_beta"], 1.0 / 1.5)


def test_core_kl_beta_grows_when_kl_is_above_target():
    core = _make_core(
        epoch_count=5,
        lr=5e-2,
        kl_penalty=KLPenaltyConfig(cutoff_factor=None, initial_beta=1e-3, target=1e-12, beta_scaling_factor=2.0),
    )
    core.update(make_trajectory(8, 4))
    assert_close(core.kl_beta, 2e-3)


def test_core_without_adaptive_kl_reports_zero_beta():
    core = _make_core(epoch_count=1, kl_penalty=KLPenaltyConfig(initial_beta=None))
    assert_true(core.kl_beta is None)
    metrics = core.update_with_metrics(make_trajectory(4, 2))
    assert_eq(metrics["stats/kl_beta"], 0.0)


def test_core_scheduler_steps_once_per_epoch():
    core = _make_core(epoch_count=3, lr=1.0, sched_name="step", step_size=1, sched_gamma=0.5)
    core.update(make_trajectory(4, 2))
    assert_close(core.lr, 0.125)


def test_core_uses_recorded_initial_policy_state():
    seed_all(0)
    net = CountingRecurrentNetwork(3)
    core = PPOCore(network=net, config=PPOConfig(epoch_count=2), lr=1e-3)
    base = make_trajectory(4, 2)
    state = np.zeros((4, 2, 1), dtype=np.float32)
    state[0] = 5.0
    traj = Trajectory(
        step_kind=base.step_kind,
        observation=base.observation,
        action=base.action,
        reward=base.reward,
        policy_state=state,
    )
    core.update(traj)
    assert_true(len(net.states_seen) >= 3)
    for s in net.states_seen:
        assert_allclose(s, th.full((2, 1), 5.0))


def test_core_state_dict_roundtrip():
    core = _make_core(epoch_count=2, kl_penalty=KLPenaltyConfig(target=10.0, cutoff_factor=None))
    core.update(make_trajectory(5, 2))
    state = core.state_dict()

    other = _make_core(epoch_count=2, kl_penalty=KLPenaltyConfig(target=10.0, cutoff_factor=None))
    other.load_state_dict(state)
    assert_close(other.kl_beta, core.kl_beta)
    assert_eq(other.update_calls, 1)
    for a, b in zip(core.network.parameters(), other.network.parameters()):
        assert_allclose(a, b)


def test_core_handles_episode_boundaries():
    F, M, L = int(StepKind.FIRST), int(StepKind.TRANSITION), int(StepKind.LAST)
    kinds = np.array([[M, M], [L, M], [F, L], [M, F], [M, M]])
    core = _make_core(epoch_count=2, use_td_lambda_return=True)
    assert_finite(core.update(make_trajectory(5, 2, kinds=kinds)))


# =============================================================================
# Builder
# =============================================================================
def test_ppo_builder_discrete_and_continuous():
    algo = ppo(obs_dim=3, action_dim=2, action_type="discrete", hidden_sizes=(8,))
    assert_true(isinstance(algo, OnPolicyAlgorithm))
    assert_true(isinstance(algo.network, CategoricalActorCriticNetwork))

    algo_c = ppo(
        obs_dim=3,
        action_dim=2,
        action_type="continuous",
        hidden_sizes=(8,),
        kl_penalty={"target": 0.02, "initial_beta": 0.5},
        advantage="empirical",
        max_replayed_sequence_length=64,
    )
    assert_true(isinstance(algo_c.network, GaussianActorCriticNetwork))
    assert_close(algo_c.core.config.kl_penalty.target, 0.02)
    assert_close(algo_c.core.kl_beta, 0.5)
    assert_eq(algo_c.core.advantage_function.kind, AdvantageKind.EMPIRICAL)
    assert_eq(algo_c.max_replayed_sequence_length, 64)


def test_ppo_builder_rejects_bad_arguments():
    assert_raises(ValueError, lambda: ppo(obs_dim=3, action_dim=2, action_type="multibinary"))
    assert_raises(ValueError, lambda: ppo(obs_dim=3, action_dim=2, advantage="retrace"))
    assert_raises(ValueError, lambda: ppo(obs_dim=3, action_dim=2, max_replayed_sequence_length=1))
    assert_raises(ValueError, lambda: ppo(obs_dim=3, action_dim=2, advantage="returns", use_td_lambda_return=True))


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("surrogate_objective_is_pessimistic", test_surrogate_objective_is_pessimistic),
    ("surrogate_objective_known_values", test_surrogate_objective_known_values),
    ("value_loss_with_and_without_clipping", test_value_loss_with_and_without_clipping),
    ("kl_penalty_loss_terms", test_kl_penalty_loss_terms),
    ("adapt_kl_beta_band", test_adapt_kl_beta_band),
    ("config_validation", test_config_validation),
    ("config_defaults_and_to_dict", test_config_defaults_and_to_dict),
    ("core_rejects_td_lambda_without_gae", test_core_rejects_td_lambda_without_gae),
    ("core_update_returns_float_and_changes_params", test_core_update_returns_float_and_changes_params),
    ("core_update_metrics_keys", test_core_update_metrics_keys),
    ("core_single_epoch_first_kl_is_zero", test_core_single_epoch_first_kl_is_zero),
    ("core_rejects_too_short_trajectory", test_core_rejects_too_short_trajectory),
    ("core_kl_beta_shrinks_when_kl_is_below_target", test_core_kl_beta_shrinks_when_kl_is_below_target),
    ("core_kl_beta_grows_when_kl_is_above_target", test_core_kl_beta_grows_when_kl_is_above_target),
    ("core_without_adaptive_kl_reports_zero_beta", test_core_without_adaptive_kl_reports_zero_beta),
    ("core_scheduler_steps_once_per_epoch", test_core_scheduler_steps_once_per_epoch),
    ("core_uses_recorded_initial_policy_state", test_core_uses_recorded_initial_policy_state),
    ("core_state_dict_roundtrip", test_core_state_dict_roundtrip),
    ("core_handles_episode_boundaries", test_core_handles_episode_boundaries),
    ("ppo_builder_discrete_and_continuous", test_ppo_builder_discrete_and_continuous),
    ("ppo_builder_rejects_bad_arguments", test_ppo_builder_rejects_bad_arguments),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="ppo")


if __name__ == "__main__":
    raise SystemExit(main())
