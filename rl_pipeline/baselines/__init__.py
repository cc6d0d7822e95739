"""
baselines
=========

Algorithms assembled from :mod:`rl_pipeline.common` components.
"""
