"""
Logging utilities for the managed instance group canary rollout.
"""

import logging
import sys

# Chatty below WARNING: one line per HTTP request / token refresh
NOISY_LOGGERS = ("urllib3", "google.auth")


def setup_logging(
    verbose: bool = False, log_file: str = "mig-rollout.log"
) -> logging.Logger:
    """
    Set up logging to stdout and a log file.

    Only the first call configures the root logger; later calls still adjust
    the level of the HTTP client loggers.

    Args:
        verbose: Enable verbose (DEBUG) logging, including HTTP client logs
        log_file: Path to log file

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logging.getLogger("rollout")
