"""Test suite for choreo.

Test Structure:
- unit/effects/: Phase positions, effect hosts and effect generation
- unit/playback/: Units, kinds, factories and schedulers
- unit/config/: Config models and loaders
- unit/utils/: Logging helpers
"""
