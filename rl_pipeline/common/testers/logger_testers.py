from __future__ import annotations

import csv
import json
import os
import warnings
from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th

from rl_pipeline.baselines.ppo import PPOConfig
from rl_pipeline.common.loggers import Logger, SafeWriter, build_logger
from rl_pipeline.common.loggers.csv_writer import CSVWriter
from rl_pipeline.common.loggers.jsonl_writer import JSONLWriter
from rl_pipeline.common.testers.test_harness import FailingWriter, MemoryWriter
from rl_pipeline.common.testers.test_utils import (
    assert_close,
    assert_eq,
    assert_file_exists,
    assert_in,
    assert_raises,
    assert_true,
    mk_tmp_dir,
    read_text,
    rm_tmp_dir,
    run_tests,
)


class _FakePbar:
    def __init__(self) -> None:
        self.descriptions: List[str] = []

    def set_description_str(self, desc: str, refresh: bool = True) -> None:
        self.descriptions.append(desc)


def _logger(tmp: str, **kwargs: Any) -> Logger:
    kwargs.setdefault("console_every", 0)
    return Logger(log_dir=tmp, exp_name="unit", run_id="r", **kwargs)


# =============================================================================
# Logger
# =============================================================================
def test_logger_filters_and_prefixes_scalars():
    tmp = mk_tmp_dir()
    try:
        mem = MemoryWriter()
        lg = _logger(tmp, writers=[mem])
        row = lg.log(
            {"a": 1, "b": th.tensor(2.0), "c": np.array([1.0, 2.0]), "d": float("nan"), "e": "text"},
            step=5,
            prefix="train",
        )
        assert_eq(len(mem.rows), 1)
        assert_eq(mem.rows[0], row)
        assert_close(row["train/a"], 1.0)
        assert_close(row["train/b"], 2.0)
        assert_true("train/c" not in row and "train/d" not in row and "train/e" not in row)
        assert_eq(row["step"], 5.0)
        assert_in("wall_time", row)
        assert_in("timestamp", row)
    finally:
        rm_tmp_dir(tmp)


def test_logger_default_step_counts_log_calls():
    tmp = mk_tmp_dir()
    try:
        lg = _logger(tmp, writers=[MemoryWriter()])
        lg.log({"x": 1.0})
        row = lg.log({"x": 2.0})
        assert_eq(row["step"], 2.0)
    finally:
        rm_tmp_dir(tmp)


def test_logger_record_and_dump_means():
    tmp = mk_tmp_dir()
    try:
        mem = MemoryWriter()
        lg = _logger(tmp, writers=[mem])
        assert_true(lg.dump() is None)
        lg.record({"loss": 1.0})
        lg.record({"loss": 3.0, "kl": 0.5})
        row = lg.dump(step=10)
        assert_close(row["loss"], 2.0)
        assert_close(row["kl"], 0.5)
        assert_true(lg.dump() is None)
        assert_eq(len(mem.rows), 1)
    finally:
        rm_tmp_dir(tmp)


def test_logger_writer_failures_respect_strict_flag():
    tmp = mk_tmp_dir()
    try:
        lenient = _logger(tmp, writers=[FailingWriter()])
        lenient.log({"x": 1.0})
        lenient.close()
        assert_true(len(lenient.errors) >= 2)

        strict = Logger(log_dir=tmp, exp_name="unit", run_id="s", writers=[FailingWriter()], strict=True, console_every=0)
        assert_raises(OSError, lambda: strict.log({"x": 1.0}))
    finally:
        rm_tmp_dir(tmp)


def test_logger_console_line_goes_to_pbar():
    tmp = mk_tmp_dir()
    try:
        lg = _logger(tmp, console_every=1)
        pbar = _FakePbar()
        lg.log({"train/loss/total": 0.25, "other": 1.0}, step=3, pbar=pbar)
        assert_eq(len(pbar.descriptions), 1)
        assert_in("train/loss/total=0.25", pbar.descriptions[0])
        assert_in("step=3", pbar.descriptions[0])
    finally:
        rm_tmp_dir(tmp)


def test_logger_run_dir_gets_suffix_when_taken():
    tmp = mk_tmp_dir()
    try:
        a = _logger(tmp)
        b = _logger(tmp)
        assert_true(a.run_dir != b.run_dir)
        assert_true(b.run_dir.endswith("r_1"))
        c = _logger(tmp, overwrite=True)
        assert_eq(c.run_dir, a.run_dir)
    finally:
        rm_tmp_dir(tmp)


def test_logger_dump_config_writes_json():
    tmp = mk_tmp_dir()
    try:
        lg = _logger(tmp)
        path = lg.dump_config({"ppo": PPOConfig().to_dict(), "device": th.device("cpu")})
        assert_file_exists(path)
        cfg = json.loads(read_text(path))
        assert_eq(cfg["ppo"]["epoch_count"], 10)
        assert_eq(cfg["ppo"]["advantage_normalization"], "batch")
        assert_eq(cfg["device"], "cpu")
    finally:
        rm_tmp_dir(tmp)


def test_logger_context_manager_closes_writers():
    tmp = mk_tmp_dir()
    try:
        mem = MemoryWriter()
        with _logger(tmp, writers=[mem]) as lg:
            lg.log({"x": 1.0})
        assert_true(mem.closed)
        assert_true(mem.flushes >= 1)
    finally:
        rm_tmp_dir(tmp)


# =============================================================================
# Writers
# =============================================================================
def test_safe_writer_disables_after_first_failure():
    w = SafeWriter(FailingWriter())
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        w.write({"x": 1.0})
        w.write({"x": 2.0})
        w.flush()
    assert_true(w.disabled)
    assert_true(isinstance(w.last_error, OSError))
    assert_eq(len(caught), 1)


def test_csv_writer_extends_header_for_new_keys():
    tmp = mk_tmp_dir()
    try:
        w = CSVWriter(tmp)
        w.write({"step": 1.0, "a": 1.0})
        w.write({"step": 2.0, "a": 2.0, "b": 3.0})
        w.close()
        with open(w.path, "r", newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert_eq(len(rows), 2)
        assert_eq(list(rows[0].keys())[0], "step")
        assert_eq(rows[0]["b"], "")
        assert_eq(float(rows[1]["b"]), 3.0)
    finally:
        rm_tmp_dir(tmp)


def test_jsonl_writer_appends_lines():
    tmp = mk_tmp_dir()
    try:
        w = JSONLWriter(tmp)
        w.write({"step": 1.0, "a": 1.0})
        w.write({"step": 2.0, "b": 2.0})
        w.close()
        lines = read_text(w.path).strip().splitlines()
        assert_eq(len(lines), 2)
        assert_eq(json.loads(lines[1])["b"], 2.0)
        assert_raises(RuntimeError, lambda: w.write({"x": 1.0}))
    finally:
        rm_tmp_dir(tmp)


def test_build_logger_attaches_file_writers():
    tmp = mk_tmp_dir()
    try:
        lg = build_logger(log_dir=tmp, exp_name="unit", run_id="b", console_every=0)
        assert_eq(len(lg.writers), 2)
        assert_true(all(isinstance(w, SafeWriter) for w in lg.writers))
        lg.log({"x": 1.0}, step=1)
        lg.close()
        assert_file_exists(os.path.join(lg.run_dir, "metrics.csv"))
        assert_file_exists(os.path.join(lg.run_dir, "metrics.jsonl"))

        strict = build_logger(log_dir=tmp, exp_name="unit", run_id="c", use_jsonl=False, strict=True)
        assert_true(isinstance(strict.writers[0], CSVWriter))
        strict.close()
    finally:
        rm_tmp_dir(tmp)


TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("logger_filters_and_prefixes_scalars", test_logger_filters_and_prefixes_scalars),
    ("logger_default_step_counts_log_calls", test_logger_default_step_counts_log_calls),
    ("logger_record_and_dump_means", test_logger_record_and_dump_means),
    ("logger_writer_failures_respect_strict_flag", test_logger_writer_failures_respect_strict_flag),
    ("logger_console_line_goes_to_pbar", test_logger_console_line_goes_to_pbar),
    ("logger_run_dir_gets_suffix_when_taken", test_logger_run_dir_gets_suffix_when_taken),
    ("logger_dump_config_writes_json", test_logger_dump_config_writes_json),
    ("logger_context_manager_closes_writers", test_logger_context_manager_closes_writers),
    ("safe_writer_disables_after_first_failure", test_safe_writer_disables_after_first_failure),
    ("csv_writer_extends_header_for_new_keys", test_csv_writer_extends_header_for_new_keys),
    ("jsonl_writer_appends_lines", test_jsonl_writer_appends_lines),
    ("build_logger_attaches_file_writers", test_build_logger_attaches_file_writers),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="loggers")


if __name__ == "__main__":
    raise SystemExit(main())
