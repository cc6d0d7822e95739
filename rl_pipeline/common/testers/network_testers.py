from __future__ import annotations

from typing import Any, Callable, List, Tuple

import torch as th
import torch.nn as nn

from rl_pipeline.common.networks.actor_critic import CategoricalActorCriticNetwork, GaussianActorCriticNetwork
from rl_pipeline.common.networks.base_networks import MLPFeaturesExtractor
from rl_pipeline.common.networks.distributions import (
    LOG_STD_MAX,
    CategoricalDistribution,
    DiagGaussianDistribution,
)
from rl_pipeline.common.testers.test_utils import (
    assert_allclose,
    assert_eq,
    assert_finite,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
    seed_all,
)


# =============================================================================
# Distributions
# =============================================================================
def test_categorical_distribution_shapes():
    seed_all(0)
    logits = th.randn(5, 3, 4)
    d = CategoricalDistribution(logits)
    a = d.sample()
    assert_shape(a, (5, 3))
    assert_shape(d.log_prob(a), (5, 3))
    assert_shape(d.entropy(), (5, 3))
    assert_eq(d.mode().tolist(), th.argmax(logits, dim=-1).tolist())


def test_categorical_distribution_index_and_detach():
    logits = th.randn(5, 3, 4, requires_grad=True)
    d = CategoricalDistribution(logits)
    head = d[:-1]
    assert_shape(head.logits, (4, 3, 4))
    first = d[0]
    assert_shape(first.sample(), (3,))
    assert_true(not d.detach().logits.requires_grad)


def test_kl_is_zero_for_identical_and_positive_otherwise():
    seed_all(1)
    logits = th.randn(6, 3)
    p = CategoricalDistribution(logits)
    assert_allclose(p.kl_divergence(CategoricalDistribution(logits.clone())), th.zeros(6), atol=1e-6)
    q = CategoricalDistribution(th.randn(6, 3))
    assert_true(bool((p.kl_divergence(q) >= 0).all()))

    mean = th.zeros(4, 2)
    g1 = DiagGaussianDistribution(mean, th.zeros(2))
    g2 = DiagGaussianDistribution(mean + 1.0, th.zeros(2))
    # KL(N(0,1) || N(1,1)) = 0.5 per dim
    assert_allclose(g1.kl_divergence(g2), th.full((4,), 1.0))


def test_kl_rejects_mismatched_families():
    c = CategoricalDistribution(th.zeros(2, 3))
    g = DiagGaussianDistribution(th.zeros(2, 3), th.zeros(3))
    assert_raises(TypeError, lambda: c.kl_divergence(g))
    assert_raises(TypeError, lambda: g.kl_divergence(c))


def test_gaussian_distribution_shapes_and_clamp():
    mean = th.zeros(5, 3, 2)
    d = DiagGaussianDistribution(mean, th.full((2,), 10.0))
    assert_allclose(d.log_std, th.full((5, 3, 2), LOG_STD_MAX))
    assert_shape(d.sample(), (5, 3, 2))
    assert_shape(d.log_prob(d.mode()), (5, 3))
    assert_shape(d.entropy(), (5, 3))
    assert_shape(d[:-1].mean, (4, 3, 2))
    assert_shape(d[:-1].log_prob(th.zeros(4, 3, 2)), (4, 3))


# =============================================================================
# Networks
# =============================================================================
def test_mlp_features_extractor_keeps_leading_dims():
    mlp = MLPFeaturesExtractor(4, (8, 6), "relu")
    assert_eq(mlp.out_dim, 6)
    assert_shape(mlp(th.zeros(3, 2, 4)), (3, 2, 6))
    assert_raises(ValueError, lambda: MLPFeaturesExtractor(4, ()))
    assert_raises(ValueError, lambda: MLPFeaturesExtractor(4, (8,), "swishy"))


def test_categorical_actor_critic_time_major_output():
    seed_all(0)
    net = CategoricalActorCriticNetwork(3, 4, hidden_sizes=(16,))
    out = net(th.randn(7, 2, 3))
    assert_shape(out.value, (7, 2))
    assert_shape(out.distribution.sample(), (7, 2))
    assert_true(out.state is None)
    assert_true(net.initial_state(2) is None)
    assert_finite(out.distribution.entropy())


def test_gaussian_actor_critic_time_major_output():
    seed_all(0)
    net = GaussianActorCriticNetwork(3, 2, hidden_sizes=(16, 16), log_std_init=-0.5)
    out = net(th.randn(7, 2, 3))
    assert_shape(out.value, (7, 2))
    assert_shape(out.distribution.sample(), (7, 2, 2))
    assert_allclose(out.distribution.log_std[0, 0], [-0.5, -0.5])


def test_actor_critic_rejects_bad_arguments():
    assert_raises(ValueError, lambda: CategoricalActorCriticNetwork(3, 1))
    assert_raises(ValueError, lambda: GaussianActorCriticNetwork(3, 0))
    assert_raises(ValueError, lambda: CategoricalActorCriticNetwork(0, 2))
    assert_raises(ValueError, lambda: CategoricalActorCriticNetwork(3, 2, init_type="zeros"))
    net = CategoricalActorCriticNetwork(3, 2)
    assert_raises(ValueError, lambda: net(th.zeros(1, 1, 5)))


def test_actor_critic_gradients_reach_all_heads():
    seed_all(0)
    net = GaussianActorCriticNetwork(3, 2, hidden_sizes=(8,), activation_fn=nn.ReLU)
    out = net(th.randn(4, 2, 3))
    loss = -out.distribution.log_prob(th.zeros(4, 2, 2)).mean() + out.value.pow(2).mean()
    loss.backward()
    assert_true(net.log_std.grad is not None)
    assert_true(net.mu_head.weight.grad is not None)
    assert_true(net.value_head.weight.grad is not None)


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("categorical_distribution_shapes", test_categorical_distribution_shapes),
    ("categorical_distribution_index_and_detach", test_categorical_distribution_index_and_detach),
    ("kl_is_zero_for_identical_and_positive_otherwise", test_kl_is_zero_for_identical_and_positive_otherwise),
    ("kl_rejects_mismatched_families", test_kl_rejects_mismatched_families),
    ("gaussian_distribution_shapes_and_clamp", test_gaussian_distribution_shapes_and_clamp),
    ("mlp_features_extractor_keeps_leading_dims", test_mlp_features_extractor_keeps_leading_dims),
    ("categorical_actor_critic_time_major_output", test_categorical_actor_critic_time_major_output),
    ("gaussian_actor_critic_time_major_output", test_gaussian_actor_critic_time_major_output),
    ("actor_critic_rejects_bad_arguments", test_actor_critic_rejects_bad_arguments),
    ("actor_critic_gradients_reach_all_heads", test_actor_critic_gradients_reach_all_heads),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="networks")


if __name__ == "__main__":
    raise SystemExit(main())
