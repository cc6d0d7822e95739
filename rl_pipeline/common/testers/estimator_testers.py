from __future__ import annotations

from typing import Any, Callable, List, Tuple

import math

import numpy as np
import torch as th

from rl_pipeline.common.estimators.advantages import AdvantageFunction, AdvantageKind, build_advantage_function
from rl_pipeline.common.estimators.normalizers import NormalizationKind, Normalizer, build_normalizer
from rl_pipeline.common.estimators.returns import (
    discounted_returns,
    empirical_advantage_estimation,
    generalized_advantage_estimation,
)
from rl_pipeline.common.trajectories.step_kind import StepKind
from rl_pipeline.common.testers.test_utils import (
    assert_allclose,
    assert_close,
    assert_eq,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
)

F, M, L = int(StepKind.FIRST), int(StepKind.TRANSITION), int(StepKind.LAST)


# =============================================================================
# Discounted returns
# =============================================================================
def test_discounted_returns_bootstraps_from_final_value():
    kinds = np.array([M, M, M])
    rewards = np.array([1.0, 1.0, 1.0])
    out = discounted_returns(kinds, rewards, 2.0, gamma=0.9)
    assert_allclose(out, [4.168, 3.52, 2.8], atol=1e-5)

    no_bootstrap = discounted_returns(kinds, rewards, None, gamma=0.9)
    assert_allclose(no_bootstrap, [2.71, 1.9, 1.0], atol=1e-5)


def test_discounted_returns_do_not_cross_last():
    kinds = np.array([M, L, F, M])
    rewards = np.array([1.0, 2.0, 3.0, 4.0])
    out = discounted_returns(kinds, rewards, 10.0, gamma=0.5)
    assert_allclose(out, [2.0, 2.0, 7.5, 9.0])

    # rewards after the boundary do not influence returns before it
    changed = discounted_returns(kinds, np.array([1.0, 2.0, 300.0, -40.0]), -7.0, gamma=0.5)
    assert_allclose(changed[:2], out[:2])


def test_discounted_returns_batched_lanes_are_independent():
    kinds = np.array([[M, M], [L, M], [M, M]])
    rewards = np.ones((3, 2))
    out = discounted_returns(kinds, rewards, np.array([0.0, 0.0]), gamma=1.0)
    assert_shape(out, (3, 2))
    assert_allclose(out[:, 0], [2.0, 1.0, 1.0])
    assert_allclose(out[:, 1], [3.0, 2.0, 1.0])


def test_discounted_returns_input_validation():
    assert_raises(ValueError, lambda: discounted_returns(np.array([M, M]), np.array([1.0]), gamma=0.9))
    assert_raises(ValueError, lambda: discounted_returns(np.array([M]), np.array([1.0]), gamma=1.5))
    assert_raises(ValueError, lambda: discounted_returns(np.array([], dtype=np.int64), np.array([]), gamma=0.9))


# =============================================================================
# Advantages
# =============================================================================
def test_gae_with_zero_lambda_is_td_residual():
    kinds = np.array([M, L, F, M])
    rewards = np.array([1.0, 0.5, 0.0, 2.0])
    values = np.array([0.2, 0.4, 0.6, 0.8])
    gamma, final = 0.9, 1.5

    adv = generalized_advantage_estimation(kinds, rewards, values, final, gamma=gamma, lam=0.0)
    next_v = np.array([0.4, 0.6, 0.8, final])
    mask = np.array([1.0, 0.0, 1.0, 1.0])
    expected = rewards + gamma * next_v * mask - values
    assert_allclose(adv, expected, atol=1e-6)


def test_gae_with_unit_lambda_matches_empirical():
    rng = np.random.default_rng(0)
    kinds = np.array([[M, M], [M, L], [L, F], [F, M], [M, M]])
    rewards = rng.normal(size=(5, 2))
    values = rng.normal(size=(5, 2))
    final = rng.normal(size=(2,))

    gae = generalized_advantage_estimation(kinds, rewards, values, final, gamma=0.95, lam=1.0)
    emp = empirical_advantage_estimation(kinds, rewards, values, final, gamma=0.95)
    assert_allclose(gae, emp, atol=1e-5)
    ret = discounted_returns(kinds, rewards, final, gamma=0.95)
    assert_allclose(emp, ret - th.as_tensor(values, dtype=th.float32), atol=1e-6)


def test_gae_is_isolated_per_episode():
    kinds = np.array([M, L, M, M])
    values = np.array([0.1, 0.2, 0.3, 0.4])
    a = generalized_advantage_estimation(kinds, np.array([1.0, 1.0, 5.0, 5.0]), values, 3.0, gamma=0.9, lam=0.8)
    b = generalized_advantage_estimation(kinds, np.array([1.0, 1.0, -5.0, 0.0]), values, -3.0, gamma=0.9, lam=0.8)
    assert_allclose(a[:2], b[:2])
    assert_true(not np.allclose(a[2:].numpy(), b[2:].numpy()))


def test_advantage_estimators_require_values():
    kinds = np.array([M, M])
    rewards = np.array([1.0, 1.0])
    assert_raises(ValueError, lambda: generalized_advantage_estimation(kinds, rewards, None, gamma=0.9, lam=0.9))
    assert_raises(ValueError, lambda: empirical_advantage_estimation(kinds, rewards, None, gamma=0.9))
    assert_raises(
        ValueError,
        lambda: generalized_advantage_estimation(kinds, rewards, np.zeros(3), gamma=0.9, lam=0.9),
    )


def test_advantage_function_variants():
    kinds = th.tensor([M, M, L])
    rewards = th.tensor([1.0, 1.0, 1.0])
    values = th.tensor([0.5, 0.5, 0.5])

    plain = AdvantageFunction(AdvantageKind.RETURNS, gamma=1.0)(kinds, rewards, values, th.tensor(0.0))
    assert_allclose(plain.advantages, [3.0, 2.0, 1.0])
    assert_allclose(plain.returns(), [3.0, 2.0, 1.0])

    emp = AdvantageFunction(AdvantageKind.EMPIRICAL, gamma=1.0)(kinds, rewards, values, th.tensor(0.0))
    assert_allclose(emp.advantages, [2.5, 1.5, 0.5])
    assert_allclose(emp.discounted_returns, [3.0, 2.0, 1.0])

    gae = AdvantageFunction(AdvantageKind.GAE, gamma=1.0, lam=0.5)(kinds, rewards, values, th.tensor(0.0))
    assert_allclose(gae.returns(td_lambda=True), gae.advantages + values)
    assert_allclose(gae.returns(), [3.0, 2.0, 1.0])


def test_advantage_function_td_lambda_needs_values():
    fn = AdvantageFunction(AdvantageKind.RETURNS, gamma=0.9)
    est = fn(th.tensor([M, M]), th.tensor([1.0, 1.0]))
    assert_raises(RuntimeError, lambda: est.returns(td_lambda=True))


def test_build_advantage_function():
    fn = build_advantage_function("GAE", gamma=0.9, lam=0.7)
    assert_eq(fn.kind, AdvantageKind.GAE)
    assert_close(fn.lam, 0.7)
    assert_eq(build_advantage_function(AdvantageKind.EMPIRICAL).kind, AdvantageKind.EMPIRICAL)
    assert_raises(ValueError, lambda: build_advantage_function("vtrace"))
    assert_raises(ValueError, lambda: AdvantageFunction(AdvantageKind.GAE, gamma=0.9, lam=-0.1))


# =============================================================================
# Normalizers
# =============================================================================
def test_batch_normalizer_standardizes():
    x = th.tensor([1.0, 2.0, 3.0, 4.0])
    y = Normalizer(NormalizationKind.BATCH)(x)
    assert_close(float(y.mean()), 0.0, atol=1e-6)
    assert_close(float(y.std(correction=0)), 1.0, rtol=1e-5)


def test_none_normalizer_is_identity():
    x = th.tensor([1.0, -2.0, 7.0])
    assert_allclose(Normalizer("none")(x), x)


def test_streaming_normalizer_accumulates_across_calls():
    norm = Normalizer(NormalizationKind.STREAMING, epsilon=0.0)
    assert_raises(RuntimeError, lambda: norm.normalize(th.tensor([1.0])))

    y1 = norm(th.tensor([1.0, 3.0]))
    assert_allclose(y1, [-1.0, 1.0], atol=1e-6)

    y2 = norm(th.tensor([5.0]))
    std = math.sqrt(35.0 / 3.0 - 9.0)
    assert_eq(norm.count, 3)
    assert_close(norm.mean, 3.0)
    assert_allclose(y2, [2.0 / std], atol=1e-6)


def test_streaming_normalizer_is_accurate_far_from_zero():
    gen = th.Generator().manual_seed(0)
    batches = [1e8 + th.randn(64, generator=gen, dtype=th.float64) for _ in range(5)]
    norm = Normalizer(NormalizationKind.STREAMING)
    for b in batches:
        norm.update(b)

    full = th.cat(batches)
    assert_eq(norm.count, 320)
    assert_close(norm.mean, float(full.mean()), rtol=0.0, atol=1e-6)
    assert_close(norm.std, float(full.std(correction=0)), rtol=1e-5)

    y = norm.normalize(full)
    assert_close(float(y.std(correction=0)), 1.0, rtol=1e-5)


def test_normalizer_state_dict_roundtrip_and_kind_check():
    a = Normalizer("streaming")
    a(th.tensor([1.0, 2.0, 6.0]))
    b = Normalizer("streaming")
    b.load_state_dict(a.state_dict())
    assert_close(b.mean, a.mean)
    assert_close(b.std, a.std)
    assert_raises(ValueError, lambda: Normalizer("batch").load_state_dict(a.state_dict()))


def test_build_normalizer():
    assert_eq(build_normalizer("Streaming").kind, NormalizationKind.STREAMING)
    assert_raises(ValueError, lambda: build_normalizer("minmax"))
    assert_raises(ValueError, lambda: Normalizer("batch", epsilon=-1.0))


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("discounted_returns_bootstraps_from_final_value", test_discounted_returns_bootstraps_from_final_value),
    ("discounted_returns_do_not_cross_last", test_discounted_returns_do_not_cross_last),
    ("discounted_returns_batched_lanes_are_independent", test_discounted_returns_batched_lanes_are_independent),
    ("discounted_returns_input_validation", test_discounted_returns_input_validation),
    ("gae_with_zero_lambda_is_td_residual", test_gae_with_zero_lambda_is_td_residual),
    ("gae_with_unit_lambda_matches_empirical", test_gae_with_unit_lambda_matches_empirical),
    ("gae_is_isolated_per_episode", test_gae_is_isolated_per_episode),
    ("advantage_estimators_require_values", test_advantage_estimators_require_values),
    ("advantage_function_variants", test_advantage_function_variants),
    ("advantage_function_td_lambda_needs_values", test_advantage_function_td_lambda_needs_values),
    ("build_advantage_function", test_build_advantage_function),
    ("batch_normalizer_standardizes", test_batch_normalizer_standardizes),
    ("none_normalizer_is_identity", test_none_normalizer_is_identity),
    ("streaming_normalizer_accumulates_across_calls", test_streaming_normalizer_accumulates_across_calls),
    ("streaming_normalizer_is_accurate_far_from_zero", test_streaming_normalizer_is_accurate_far_from_zero),
    ("normalizer_state_dict_roundtrip_and_kind_check", test_normalizer_state_dict_roundtrip_and_kind_check),
    ("build_normalizer", test_build_normalizer),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="estimators")


if __name__ == "__main__":
    raise SystemExit(main())
