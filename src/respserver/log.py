"""
=============================================================================
LOGGING
=============================================================================

Every module logs through its own `logging.getLogger(__name__)`, so all
server output lives under the "respserver" logger tree:

    respserver                   ← level set by setup_logging()
    ├── respserver.server        ← startup, shutdown, session errors
    ├── respserver.core.*        ← sockets, connections, worker pool
    ├── respserver.commands.*    ← command registration
    └── respserver.access        ← one record per executed command
                                   (only when access_log is enabled)

The library never configures handlers by itself; setup_logging() is for
applications and the command-line entry point.

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional


access_logger = logging.getLogger("respserver.access")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for log aggregators (ELK, Loki, Datadog...).

        {"time": "2024-01-01 12:00:00", "level": "INFO",
         "logger": "respserver.server", "message": "Listening on ..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """
    Configure the root logger once for the whole process.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        log_format: "text" for humans, "json" for machines.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logging.basicConfig(level=numeric_level, handlers=[handler], force=True)
    else:
        logging.basicConfig(
            level=numeric_level,
            format=TEXT_FORMAT,
            datefmt=DATE_FORMAT,
            force=True,
        )

    logging.getLogger("respserver").setLevel(numeric_level)


@dataclass
class CommandLog:
    """
    Access-log entry for one executed command.

    connection_id:  Short id of the client connection
    client:         Client address
    command:        Command name as sent
    arguments:      Number of arguments (values are not logged)
    reply:          Reply type, e.g. "BulkReply" or "ErrorReply"
    duration_ms:    Time spent dispatching the command
    timestamp:      When the command finished
    """

    connection_id: str
    client: str
    command: str
    arguments: int
    reply: str
    duration_ms: float
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.strftime("%d/%b/%Y:%H:%M:%S %z")

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "client": self.client,
            "command": self.command,
            "arguments": self.arguments,
            "reply": self.reply,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        return (
            f"{self.client} [{self.connection_id}] [{self.timestamp}] "
            f'"{self.command}" {self.arguments} args -> {self.reply} '
            f"{self.duration_ms:.2f}ms"
        )


def log_command(entry: CommandLog, log_format: str = "text", level: Optional[int] = None) -> None:
    """Emit an access-log entry on the respserver.access logger."""
    level = logging.INFO if level is None else level
    if not access_logger.isEnabledFor(level):
        return
    if log_format == "json":
        access_logger.log(level, json.dumps(entry.to_dict()))
    else:
        access_logger.log(level, entry.to_text())
