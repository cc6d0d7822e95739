"""
testers
=======

Test suites, one ``*_testers.py`` module per subsystem. Each module can be run
directly (``python -m rl_pipeline.common.testers.buffer_testers [filter]``) or
collected by pytest.
"""
