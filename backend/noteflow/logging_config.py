"""
NoteFlow Backend - Logging Setup
==================================

What:  Root logger configuration shared by the HTTP app and the backfill CLI.
How:   logging.basicConfig with one stdout StreamHandler; noisy third-party
       loggers are raised to WARNING.

Format: 2024-01-15T12:00:00 [INFO] noteflow.services.intake_service: message
"""

import logging
import sys

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
