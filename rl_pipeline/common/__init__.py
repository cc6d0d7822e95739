"""
common
======

Shared building blocks of the training pipeline:

- trajectories : StepKind, Batchable, Trajectory
- buffers      : UniformReplayBuffer
- estimators   : discounted returns, GAE, empirical advantages, normalizers
- networks     : action distributions and actor-critic networks
- optimizers   : optimizer / scheduler builders, gradient clipping
- environments : batched environment interface, gymnasium adapter
- metrics      : episode statistics used as step callbacks
- loggers      : Logger with CSV / JSONL / TensorBoard writers
- policies     : BaseCore, OnPolicyAlgorithm
- trainers     : Trainer
"""
