"""
Logging setup for the Proposal AI service.

Log lines are either plain text (`time | level | logger | message`) or one JSON
object per line. JSON lines carry the pipeline context (user, session,
provider) when the call site attaches it through `extra=`.
"""
import logging
import logging.handlers
import json
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict

LOG_FILE_NAME = "proposal_ai.log"
TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONTEXT_FIELDS = ("request_id", "user_id", "session_id", "provider")


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in CONTEXT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                entry[attr] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    log_dir: Path = Path("logs"),
    level: str = "INFO",
    enable_json: bool = False,
    enable_console: bool = True,
    enable_file: bool = False,
) -> logging.Logger:
    """
    Replace the root logger's handlers.

    Args:
        log_dir: Directory for proposal_ai.log, created on demand
        level: Logging level name; unknown names fall back to INFO
        enable_json: Emit JSON lines instead of plain text
        enable_console: Log to stdout
        enable_file: Also log to a size-rotated file (10MB x 5)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = JSONFormatter() if enable_json else logging.Formatter(TEXT_FORMAT, "%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if enable_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    logger = logging.getLogger("proposal_ai")
    logger.info(f"[LOGGING] level={level} json={enable_json} file={log_dir / LOG_FILE_NAME if enable_file else 'off'}")
    return logger
