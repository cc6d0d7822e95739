from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple

import threading

import numpy as np
import torch as th

from rl_pipeline.common.buffers.replay_buffer import UniformReplayBuffer
from rl_pipeline.common.estimators.returns import discounted_returns
from rl_pipeline.common.trajectories.trajectory import Trajectory
from rl_pipeline.common.testers.test_harness import make_row
from rl_pipeline.common.testers.test_utils import (
    assert_allclose,
    assert_eq,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
)


def _fill(buf: UniformReplayBuffer, n: int) -> List[int]:
    return [buf.record(make_row(buf.batch_size, float(i))) for i in range(n)]


# =============================================================================
# Construction / recording
# =============================================================================
def test_buffer_rejects_invalid_sizes():
    assert_raises(ValueError, lambda: UniformReplayBuffer(0, 10))
    assert_raises(ValueError, lambda: UniformReplayBuffer(2, 0))


def test_buffer_record_returns_increasing_ids():
    buf = UniformReplayBuffer(3, 4)
    ids = _fill(buf, 7)
    assert_eq(ids, list(range(7)))
    assert_eq(buf.last_id, 6)
    assert_eq(buf.size, 4)
    assert_true(buf.is_full)


def test_buffer_record_rejects_wrong_batch_shape():
    buf = UniformReplayBuffer(2, 4)
    assert_raises(ValueError, lambda: buf.record(make_row(3, 0.0)))


def test_buffer_rejected_record_leaves_buffer_unchanged():
    buf = UniformReplayBuffer(2, 4)
    buf.record(make_row(2, 0.0))
    good = make_row(2, 1.0)

    wide = Trajectory(
        step_kind=good.step_kind,
        observation=np.zeros((2, 3), dtype=np.float32),
        action=good.action,
        reward=good.reward,
    )
    with_state = Trajectory(
        step_kind=good.step_kind,
        observation=good.observation,
        action=good.action,
        reward=good.reward,
        policy_state=np.zeros((2, 1), dtype=np.float32),
    )
    assert_raises(ValueError, lambda: buf.record(wide))
    assert_raises(ValueError, lambda: buf.record(with_state))

    assert_eq(buf.last_id, 0)
    data = buf.recorded_data()
    assert_eq(len(data), 1)
    assert_allclose(data.reward, [[1.0, 1.0]])
    assert_eq(buf.record(good), 1)


def test_buffer_ring_row_layout():
    buf = UniformReplayBuffer(2, 3)
    _fill(buf, 5)
    # lane b owns rows [3b, 3b + 3); id i sits at row 3b + i % 3
    assert_eq(buf.stored_ids().tolist(), [3, 4, 2, 3, 4, 2])


def test_buffer_recorded_data_is_oldest_first():
    buf = UniformReplayBuffer(2, 3)
    _fill(buf, 5)
    data = buf.recorded_data()
    assert_shape(data.observation, (3, 2, 2))
    assert_allclose(data.observation[:, :, 0], [[2, 2], [3, 3], [4, 4]])
    assert_allclose(data.observation[:, :, 1], [[0, 1], [0, 1], [0, 1]])
    assert_true(data.policy_state is None)
    assert_eq(data.step_kind.dtype, th.int64)


def test_buffer_reset_restarts_ids():
    buf = UniformReplayBuffer(2, 3)
    _fill(buf, 4)
    buf.reset()
    assert_eq(buf.size, 0)
    assert_raises(RuntimeError, buf.recorded_data)
    assert_eq(buf.record(make_row(2, 0.0)), 0)


# =============================================================================
# Sampling
# =============================================================================
def test_buffer_empty_sampling_raises():
    buf = UniformReplayBuffer(2, 5)
    assert_raises(RuntimeError, lambda: buf.sample_batch(4))
    assert_raises(RuntimeError, lambda: buf.sample_batch(4, step_count=2))
    assert_raises(RuntimeError, buf.recorded_data)


def test_buffer_step_count_equal_to_valid_length_is_allowed():
    buf = UniformReplayBuffer(2, 5, seed=0)
    _fill(buf, 5)
    batch, ids, _ = buf.sample_batch(8, step_count=5)
    assert_shape(ids, (8, 5))
    for row in ids.tolist():
        assert_eq(row, [0, 1, 2, 3, 4])
    assert_raises(RuntimeError, lambda: buf.sample_batch(8, step_count=6))


def test_buffer_step_count_exceeding_recorded_raises():
    buf = UniformReplayBuffer(2, 10)
    _fill(buf, 3)
    assert_raises(RuntimeError, lambda: buf.sample_batch(1, step_count=4))
    assert_raises(ValueError, lambda: buf.sample_batch(1, step_count=0))


def test_buffer_sampling_after_wraparound_skips_overwritten_ids():
    buf = UniformReplayBuffer(2, 5, seed=1)
    _fill(buf, 6)  # id 5 == max_length overwrote id 0
    _, ids, _ = buf.sample_batch(500)
    assert_true(int(ids.min()) >= 1 and int(ids.max()) <= 5, f"ids out of range: {ids.min()}..{ids.max()}")

    _, win, _ = buf.sample_batch(200, step_count=5)
    assert_true(bool((win[:, 0] == 1).all()), "only one 5-step window is resident")


def test_buffer_sampled_rows_match_ids():
    buf = UniformReplayBuffer(3, 4, seed=2)
    _fill(buf, 9)
    batch, ids, _ = buf.sample_batch(64, step_count=2)
    assert_shape(batch.observation, (64, 2, 2))
    assert_allclose(batch.observation[..., 0], ids.float())
    assert_true(bool((ids[:, 1] - ids[:, 0] == 1).all()))
    # both steps of a window come from the same lane
    assert_allclose(batch.observation[:, 0, 1], batch.observation[:, 1, 1])


def test_buffer_probabilities_are_uniform_over_windows():
    buf = UniformReplayBuffer(2, 10, seed=3)
    _fill(buf, 4)
    _, _, probs = buf.sample_batch(5, step_count=2)
    assert_shape(probs, (5,))
    # 3 start ids x 2 lanes
    assert_allclose(probs, np.full((5,), 1.0 / 6.0))

    _, _, probs1 = buf.sample_batch(5)
    assert_allclose(probs1, np.full((5,), 1.0 / 8.0))


# =============================================================================
# End-to-end
# =============================================================================
def test_buffer_discounted_returns_over_retained_window():
    buf = UniformReplayBuffer(4, 10)
    for i in range(15):
        buf.record(make_row(4, float(i), reward=1.0))

    data = buf.recorded_data()
    assert_eq(len(data), 10)
    assert_allclose(data.observation[:, 0, 0], np.arange(5, 15))

    window = 9
    rets = discounted_returns(data.step_kind[:window], data.reward[:window], None, gamma=0.5)
    expected = np.array([sum(0.5**i for i in range(window - t)) for t in range(window)])
    assert_allclose(rets, np.repeat(expected[:, None], 4, axis=1), atol=1e-6)


# =============================================================================
# Concurrency
# =============================================================================
def test_buffer_concurrent_writers_get_unique_ids():
    buf = UniformReplayBuffer(2, 1000)
    written: Dict[int, float] = {}
    lock = threading.Lock()

    def writer(tid: int) -> None:
        for k in range(50):
            value = float(tid * 1000 + k)
            rid = buf.record(make_row(2, value))
            with lock:
                written[rid] = value

    threads = [threading.Thread(target=writer, args=(t,)) for t in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert_eq(sorted(written.keys()), list(range(200)))
    data = buf.recorded_data()
    for rid, value in written.items():
        assert_allclose(data.observation[rid, :, 0], [value, value])


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("buffer_rejects_invalid_sizes", test_buffer_rejects_invalid_sizes),
    ("buffer_record_returns_increasing_ids", test_buffer_record_returns_increasing_ids),
    ("buffer_record_rejects_wrong_batch_shape", test_buffer_record_rejects_wrong_batch_shape),
    ("buffer_rejected_record_leaves_buffer_unchanged", test_buffer_rejected_record_leaves_buffer_unchanged),
    ("buffer_ring_row_layout", test_buffer_ring_row_layout),
    ("buffer_recorded_data_is_oldest_first", test_buffer_recorded_data_is_oldest_first),
    ("buffer_reset_restarts_ids", test_buffer_reset_restarts_ids),
    ("buffer_empty_sampling_raises", test_buffer_empty_sampling_raises),
    ("buffer_step_count_equal_to_valid_length_is_allowed", test_buffer_step_count_equal_to_valid_length_is_allowed),
    ("buffer_step_count_exceeding_recorded_raises", test_buffer_step_count_exceeding_recorded_raises),
    ("buffer_sampling_after_wraparound_skips_overwritten_ids", test_buffer_sampling_after_wraparound_skips_overwritten_ids),
    ("buffer_sampled_rows_match_ids", test_buffer_sampled_rows_match_ids),
    ("buffer_probabilities_are_uniform_over_windows", test_buffer_probabilities_are_uniform_over_windows),
    ("buffer_discounted_returns_over_retained_window", test_buffer_discounted_returns_over_retained_window),
    ("buffer_concurrent_writers_get_unique_ids", test_buffer_concurrent_writers_get_unique_ids),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="buffers")


if __name__ == "__main__":
    raise SystemExit(main())
