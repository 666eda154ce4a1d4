# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/namesync/logging/log.py

from __future__ import annotations

import logging
from pathlib import Path
from datetime import datetime, timezone
import uuid

def init_logging(
    *,
    log_dir: Path | None = None,
    name: str = "namesync",
    verbose: bool = False,
    banner: str | None = "namesync controller started",
) -> tuple[logging.Logger, str, Path | None]:
    """
    Initializes:
      - console output (INFO, DEBUG with --verbose)
      - optional full-trace log file when log_dir is given
      - returns run_id so observers can reuse it

    Pass banner=None for one-shot commands that should not announce a run.
    """
    run_id = str(uuid.uuid4())

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console = INFO by default, DEBUG when --verbose is passed
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    log_path = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        log_path = log_dir / f"{name}-{ts}-{run_id}.log"

        # File = FULL TRACE
        fh = logging.FileHandler(log_path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    if banner:
        logger.info(f"=== {banner} ===")
        logger.info(f"run_id={run_id}")
    if log_path is not None:
        logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
