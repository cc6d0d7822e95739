from __future__ import annotations

from typing import Any, Callable, List, Tuple

import torch as th
import torch.nn as nn

from rl_pipeline.common.optimizers.optimizer_builder import (
    build_optimizer,
    clip_grad_norm,
    load_optimizer_state_dict,
    optimizer_state_dict,
)
from rl_pipeline.common.optimizers.scheduler_builder import (
    build_scheduler,
    load_scheduler_state_dict,
    scheduler_state_dict,
)
from rl_pipeline.common.testers.test_utils import (
    assert_close,
    assert_eq,
    assert_raises,
    assert_true,
    run_tests,
)


def _lr(opt) -> float:
    return float(opt.param_groups[0]["lr"])


def test_build_optimizer_names():
    for name, cls in (
        ("adam", th.optim.Adam),
        ("AdamW", th.optim.AdamW),
        ("r-adam", th.optim.RAdam),
        ("sgd", th.optim.SGD),
        ("rmsprop", th.optim.RMSprop),
    ):
        opt = build_optimizer(nn.Linear(2, 2).parameters(), name=name, lr=1e-3)
        assert_true(isinstance(opt, cls), f"{name} -> {type(opt).__name__}")
        assert_close(_lr(opt), 1e-3)


def test_build_optimizer_rejects_bad_arguments():
    params = lambda: nn.Linear(2, 2).parameters()  # noqa: E731
    assert_raises(ValueError, lambda: build_optimizer(params(), name="lion"))
    assert_raises(ValueError, lambda: build_optimizer(params(), lr=0.0))
    assert_raises(ValueError, lambda: build_optimizer(params(), weight_decay=-1.0))
    assert_raises(ValueError, lambda: build_optimizer(params(), name="sgd", nesterov=True))
    assert_raises(ValueError, lambda: build_optimizer([], name="adam"))


def test_clip_grad_norm_reports_pre_clip_norm():
    p = nn.Parameter(th.zeros(2))
    p.grad = th.tensor([3.0, 4.0])
    assert_close(clip_grad_norm([p], 0.0), 5.0)
    assert_close(float(p.grad.norm()), 5.0)

    assert_close(clip_grad_norm([p], 1.0), 5.0)
    assert_close(float(p.grad.norm()), 1.0, rtol=1e-5)

    q = nn.Parameter(th.zeros(2))
    assert_eq(clip_grad_norm([q], 1.0), 0.0)


def test_scheduler_none_and_unknown():
    opt = build_optimizer(nn.Linear(2, 2).parameters(), lr=1.0)
    assert_true(build_scheduler(opt, name="none") is None)
    assert_true(build_scheduler(opt, name="constant") is None)
    assert_raises(ValueError, lambda: build_scheduler(opt, name="cyclic"))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="linear", total_steps=0))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="cosine", total_steps=10, min_lr_ratio=2.0))
    assert_eq(scheduler_state_dict(None), {})


def test_linear_scheduler_warmup_then_decay():
    opt = build_optimizer(nn.Linear(2, 2).parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="linear", total_steps=6, warmup_steps=2, min_lr_ratio=0.0)
    lrs = [_lr(opt)]
    for _ in range(7):
        opt.step()
        sched.step()
        lrs.append(_lr(opt))
    # warmup 1/2, 2/2, then linear decay over the remaining 4 steps
    expected = [0.5, 1.0, 1.0, 0.75, 0.5, 0.25, 0.0, 0.0]
    for got, exp in zip(lrs, expected):
        assert_close(got, exp, atol=1e-8)


def test_step_scheduler_and_state_roundtrip():
    opt = build_optimizer(nn.Linear(2, 2).parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="step", step_size=2, gamma=0.5)
    for _ in range(4):
        opt.step()
        sched.step()
    assert_close(_lr(opt), 0.25)

    opt2 = build_optimizer(nn.Linear(2, 2).parameters(), name="sgd", lr=1.0)
    sched2 = build_scheduler(opt2, name="step", step_size=2, gamma=0.5)
    load_optimizer_state_dict(opt2, optimizer_state_dict(opt))
    load_scheduler_state_dict(sched2, scheduler_state_dict(sched))
    assert_eq(sched2.last_epoch, sched.last_epoch)
    assert_close(_lr(opt2), 0.25)


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("build_optimizer_names", test_build_optimizer_names),
    ("build_optimizer_rejects_bad_arguments", test_build_optimizer_rejects_bad_arguments),
    ("clip_grad_norm_reports_pre_clip_norm", test_clip_grad_norm_reports_pre_clip_norm),
    ("scheduler_none_and_unknown", test_scheduler_none_and_unknown),
    ("linear_scheduler_warmup_then_decay", test_linear_scheduler_warmup_then_decay),
    ("step_scheduler_and_state_roundtrip", test_step_scheduler_and_state_roundtrip),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="optimizers")


if __name__ == "__main__":
    raise SystemExit(main())
