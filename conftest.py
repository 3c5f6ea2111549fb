"""
Pytest configuration for the CHIP-8 test suite.

Forces SDL's dummy video and audio drivers before anything imports
pygame, so window and mixer tests run on machines without a display or
sound card:

    python -m pytest              # full suite
    python -m pytest -m "not pygame"   # core only
"""

import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "pygame: tests that open a pygame window or mixer (skipped without pygame)")
