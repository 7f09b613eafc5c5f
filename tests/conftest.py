"""
Shared pytest fixtures for lsm-simulator tests.
"""

import logging

import pytest


@pytest.fixture(autouse=True)
def reset_lsmsimulator_logging():
    """Reset logging state before each test.

    Ensures tests start with a clean logging configuration:
    - Removes all handlers except NullHandler
    - Resets level to NOTSET (inherit from parent)

    This prevents logging configuration from one test affecting another.
    """
    logger = logging.getLogger("lsmsimulator")

    def _reset():
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            if not isinstance(handler, logging.NullHandler):
                handler.close()
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.NOTSET)

    _reset()
    yield
    _reset()
