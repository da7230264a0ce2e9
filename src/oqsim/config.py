"""Logging configuration module.

Import this module first in scripts to get oqsim log output configured.
"""
from __future__ import annotations

import logging
import os

LOG_LEVEL_ENV = "OQSIM_LOG_LEVEL"


def setup_logging() -> None:
    """Configure logging based on environment variables.

    Control log level via OQSIM_LOG_LEVEL environment variable.

    Examples:
        # Default (WARNING level)
        python examples/nv_cooling_2state.py

        # Debug mode - assembly details, audit summaries, every step
        OQSIM_LOG_LEVEL=DEBUG python examples/nv_cooling_2state.py

        # Info mode - lifecycle transitions
        OQSIM_LOG_LEVEL=INFO python examples/nv_cooling_2state.py
    """
    level_name = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(name)s - %(levelname)s - %(message)s",
    )


# Configure logging on import
setup_logging()
