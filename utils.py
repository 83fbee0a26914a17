# utils.py

import logging
import sys
import re
import mimetypes
from pathlib import Path
from queue import Queue
from logging.handlers import QueueHandler
from typing import Any, Optional

from config import LOG_FILE, LOG_LEVEL, SUPPORTED_MIME_TYPES

# The formatter needs to be defined at the module level
# so the QueueHandler can format the record before putting it in the queue.
log_formatter = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s] - %(message)s'
)

class FormattedQueueHandler(QueueHandler):
    """A QueueHandler that formats the record before putting it on the queue."""
    def emit(self, record):
        self.enqueue(self.format(record))

def setup_logger(log_queue: Queue):
    """Configures the service logger to send records to a queue, a file and stdout."""
    logger = logging.getLogger("ExtractionEngine")
    if not logger.handlers:
        logger.setLevel(LOG_LEVEL)

        queue_handler = FormattedQueueHandler(log_queue)
        queue_handler.setFormatter(log_formatter)
        logger.addHandler(queue_handler)

        file_handler = logging.FileHandler(LOG_FILE, mode='a')
        file_handler.setFormatter(log_formatter)
        logger.addHandler(file_handler)

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(log_formatter)
        logger.addHandler(stdout_handler)
    return logger

# Configured by the lifespan manager in main.py
log = logging.getLogger("ExtractionEngine")


_EXTENSION_MIME_TYPES = {
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".eml": "message/rfc822",
}

def get_mime_type(file_path) -> str:
    """Determines the MIME type of a file from its name."""
    suffix = Path(str(file_path)).suffix.lower()
    mime_type = _EXTENSION_MIME_TYPES.get(suffix) or mimetypes.guess_type(str(file_path))[0]
    return mime_type if mime_type in SUPPORTED_MIME_TYPES else "application/octet-stream"


_NUMBER_CLEANUP = re.compile(r"[^0-9.\-]")

def parse_number(value: Any) -> Optional[float]:
    """
    Converts model output such as "20,500.00", "$ 13.00" or "RM1,300" to a float.
    Returns None for empty or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    negative = text.startswith("(") and text.endswith(")")
    cleaned = _NUMBER_CLEANUP.sub("", text)
    if cleaned in ("", "-", ".", "-."):
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return -number if negative else number


def version_score(version: Optional[str]) -> int:
    """Encodes a semantic version as major*100 + minor*10 + patch."""
    if not version:
        return 0
    parts = []
    for chunk in str(version).split(".")[:3]:
        match = re.match(r"\d+", chunk.strip())
        parts.append(int(match.group()) if match else 0)
    parts += [0] * (3 - len(parts))
    return parts[0] * 100 + parts[1] * 10 + parts[2]


def hash_string(value: str) -> int:
    """Deterministic 32-bit string hash (h = h*31 + c), absolute value."""
    h = 0
    for char in value:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)
