"""Structured logging for ecoflow runs.

Every DAG run installs a fresh run id; all records logged while the run is
in flight carry it, and records from a node logger also carry the package
name and its DAG level. Output is either a compact console line or one JSON
object per line.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

NODE_LOGGER_PREFIX = "ecoflow.node"

# One per DAG run
run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

# Attributes every LogRecord has; anything else was passed as an extra
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "taskName",
}


def new_run_id() -> str:
    """Generate a run id and make it current for this context."""
    rid = uuid.uuid4().hex[:8]
    run_id.set(rid)
    return rid


def get_run_id() -> str:
    """Current run id; starts a new one when none is set."""
    return run_id.get() or new_run_id()


def _node_context(record: logging.LogRecord) -> Optional[str]:
    package = getattr(record, "package", None)
    if package is None:
        return None
    dag_level = getattr(record, "dag_level", None)
    return package if dag_level is None else f"{package}@L{dag_level}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log files and machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": get_run_id(),
        }

        if record.levelno >= logging.ERROR:
            entry["location"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = value

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """``[HH:MM:SS] L [run] [package@Ln] logger: message`` with level colours."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        node = _node_context(record)

        line = f"{color}[{stamp}] {record.levelname[0]}{self.RESET} [{get_run_id()}]"
        if node:
            line += f" [{node}]"
        line += f" {record.name}: {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Install ecoflow's handlers on the root logger.

    Console output goes to stderr so stdout stays free for CLI tables. A
    log file, when given, always receives JSON.

    Args:
        level: Log level name.
        json_output: Emit JSON on the console instead of coloured lines.
        log_file: Optional path for a JSON log file.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)


class _NodeFilter(logging.Filter):
    """Stamp package/level context onto every record of a node logger."""

    def __init__(self, package: str, dag_level: Optional[int]):
        super().__init__()
        self.package = package
        self.dag_level = dag_level

    def filter(self, record: logging.LogRecord) -> bool:
        record.package = self.package
        record.dag_level = self.dag_level
        return True


def node_logger(package: str, dag_level: Optional[int] = None) -> logging.Logger:
    """Logger for one DAG node.

    Records carry ``package`` and ``dag_level`` extras. Calling again for the
    same package replaces the context rather than stacking filters.
    """
    logger = logging.getLogger(f"{NODE_LOGGER_PREFIX}.{package}")
    for f in logger.filters[:]:
        if isinstance(f, _NodeFilter):
            logger.removeFilter(f)
    logger.addFilter(_NodeFilter(package, dag_level))
    return logger
