"""
Loggers
=======

This package provides:
- Logger frontend (meta keys, in-memory aggregation, console printing)
- Writer backends (CSV, JSONL, TensorBoard) and a failure-isolating wrapper
- A builder utility to construct a Logger with selected backends

Typical usage
-------------
from rl_pipeline.common.loggers import build_logger

with build_logger(log_dir="./runs", exp_name="ppo_cartpole") as logger:
    logger.log({"loss": 0.1}, step=1, prefix="train")
"""

from __future__ import annotations

from .base_writer import SafeWriter, Writer
from .csv_writer import CSVWriter
from .jsonl_writer import JSONLWriter
from .logger import Logger
from .logger_builder import build_logger
from .tensorboard_writer import TensorBoardWriter

__all__ = [
    "Logger",
    "Writer",
    "SafeWriter",
    "CSVWriter",
    "JSONLWriter",
    "TensorBoardWriter",
    "build_logger",
]
