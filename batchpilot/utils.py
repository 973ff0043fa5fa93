"""
Utility functions for batchpilot.

Includes logging setup and job id generation.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for pretty output
console = Console()

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "pretty",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Set up logging for a batchpilot run.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "pretty" (rich console), "plain", or "structured" (JSON)
        log_file: Optional file that receives every record as well

    Returns:
        The configured "batchpilot" logger
    """
    logger = logging.getLogger("batchpilot")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if log_format == "pretty":
        console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
    elif log_format == "structured":
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for attr in ("pool_id", "job_id", "stage"):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def generate_job_id(prefix: str, now: Optional[datetime] = None) -> str:
    """
    Generate a job id that does not collide with earlier runs.

    Format: <prefix>-YYYYmmdd-HHMMSS-ffffff (UTC). Batch ids allow letters,
    digits, hyphens and underscores, up to 64 characters.

    Raises:
        ValueError: If the resulting id is not a valid job id
    """
    now = now or datetime.now(timezone.utc)
    job_id = f"{prefix}-{now.strftime('%Y%m%d-%H%M%S-%f')}"
    if not JOB_ID_PATTERN.match(job_id):
        raise ValueError(f"Invalid job id {job_id!r}: use letters, digits, '-' or '_' (max 64)")
    return job_id
