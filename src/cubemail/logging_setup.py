import json
import logging
import os
import re
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from uuid import uuid4

from .config import MAX_LOG_FILES

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
TOKEN_RE = re.compile(
    r"(?i)\b(bearer|token|apikey|api_key|secret|password|passwd)\s*[:=]\s*[^\s,;]+"
)
ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(category)s %(name)s: %(message)s"
CONSOLE_FORMAT = "[cube-mail] %(asctime)s %(message)s"
CONSOLE_DATE_FORMAT = "%H:%M:%S"


def sanitize_text(value: str) -> str:
    """Mask addresses and credentials; IMAP usernames are usually emails."""
    if not value:
        return value
    sanitized = EMAIL_RE.sub("<email>", value)
    return TOKEN_RE.sub(r"\1=<redacted>", sanitized)


def strip_ansi(value: str) -> str:
    if not value:
        return value
    return ANSI_RE.sub("", value)


class CategoryFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "category"):
            record.category = "general"
        return True


class ContextFilter(logging.Filter):
    """Stamps every record with the run it belongs to."""

    def __init__(self, *, session_id: str, app_version: str, release_date: str) -> None:
        super().__init__()
        self._context = {
            "session_id": session_id,
            "app_version": app_version,
            "release_date": release_date,
        }

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self._context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_text(record.getMessage())
        record.args = ()
        return True


class PlainTextFormatter(logging.Formatter):
    """Colour codes are for the console only."""

    def format(self, record: logging.LogRecord) -> str:
        return strip_ansi(super().format(record))

    def formatException(self, ei) -> str:
        return sanitize_text(super().formatException(ei))


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "category": getattr(record, "category", "general"),
            "logger": record.name,
            "thread": record.threadName,
            "message": strip_ansi(record.getMessage()),
            "session_id": getattr(record, "session_id", ""),
            "app_version": getattr(record, "app_version", ""),
            "release_date": getattr(record, "release_date", ""),
        }
        if record.exc_info:
            payload["exception"] = sanitize_text(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False)


def _install_exception_hooks() -> None:
    logger = logging.getLogger(__name__)

    def log_unhandled(exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            return
        logger.critical(
            "Unhandled exception",
            exc_info=(exc_type, exc, tb),
            extra={"category": "fatal"},
        )

    def log_unhandled_in_thread(args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        thread_name = args.thread.name if args.thread is not None else "unknown"
        logger.critical(
            "Unhandled exception in %s thread",
            thread_name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            extra={"category": "fatal"},
        )

    sys.excepthook = log_unhandled
    threading.excepthook = log_unhandled_in_thread


def _run_log_path(path: Path) -> Path:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return path.with_name(f"{path.stem}_{timestamp}_{os.getpid()}{path.suffix}")


def _prune_run_logs(path: Path, keep: int) -> None:
    runs = sorted(
        path.parent.glob(f"{path.stem}_*{path.suffix}"),
        key=lambda candidate: candidate.stat().st_mtime,
    )
    for stale in runs[: max(0, len(runs) - keep)]:
        try:
            stale.unlink()
        except OSError:
            continue


def _file_handlers(
    base_path: Path,
    *,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    """A rotating and a per-run file for both the text and the JSONL stream."""
    handlers: list[logging.Handler] = []
    for suffix, formatter in ((".log", PlainTextFormatter(TEXT_FORMAT)), (".jsonl", JsonFormatter())):
        stream_path = base_path.with_suffix(suffix)
        rotating = RotatingFileHandler(
            stream_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        per_run = logging.FileHandler(_run_log_path(stream_path), encoding="utf-8")
        for handler in (rotating, per_run):
            handler.setFormatter(formatter)
            handlers.append(handler)
    return handlers


def _level(name: str) -> int:
    return logging.getLevelNamesMapping().get(str(name).upper(), logging.INFO)


def setup_logging(
    log_file: str,
    *,
    log_level: str = "INFO",
    log_console_level: str = "INFO",
    log_console_enabled: bool = True,
    log_max_bytes: int = 5_000_000,
    log_backup_count: int = 3,
    log_run_files_keep: int = 3,
    app_version: str | None = None,
    release_date: str | None = None,
) -> None:
    base_path = Path(log_file)
    if not base_path.suffix:
        base_path = base_path.with_suffix(".log")
    backup_count = min(MAX_LOG_FILES, max(0, log_backup_count))
    run_files_keep = min(MAX_LOG_FILES, max(1, log_run_files_keep))
    file_level = _level(log_level)
    console_level = _level(log_console_level)

    file_error: OSError | None = None
    try:
        base_path.parent.mkdir(parents=True, exist_ok=True)
        file_handlers = _file_handlers(
            base_path,
            max_bytes=log_max_bytes,
            backup_count=backup_count,
        )
    except OSError as exc:
        file_error = exc
        fallback = logging.StreamHandler()
        fallback.setFormatter(PlainTextFormatter(TEXT_FORMAT))
        file_handlers = [fallback]
    for handler in file_handlers:
        handler.setLevel(file_level)

    handlers = list(file_handlers)
    if log_console_enabled:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT, CONSOLE_DATE_FORMAT))
        console.setLevel(console_level)
        handlers.append(console)

    context_filter = ContextFilter(
        session_id=uuid4().hex,
        app_version=str(app_version or ""),
        release_date=str(release_date or ""),
    )
    for handler in handlers:
        handler.addFilter(CategoryFilter())
        handler.addFilter(RedactionFilter())
        handler.addFilter(context_filter)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(min(file_level, console_level))
    for handler in handlers:
        root.addHandler(handler)
    _install_exception_hooks()

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.warning(
            "File logging unavailable, using stderr: %s",
            file_error,
            extra={"category": "startup"},
        )
        return
    logger.info("Logging to %s", base_path, extra={"category": "startup"})
    for stream_path in (base_path, base_path.with_suffix(".jsonl")):
        _prune_run_logs(stream_path, run_files_keep)
