from __future__ import annotations

from datetime import datetime
import logging
import os
from pathlib import Path
import sys
import tempfile

_DEFAULT_LOG_LEVEL = "INFO"
_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    "DEBUG": "\x1b[36m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}
_TRANSCRIPT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ColorFormatter(logging.Formatter):
    def __init__(self, fmt: str, datefmt: str, *, use_color: bool) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        if self._use_color:
            color = _LEVEL_COLORS.get(original, "")
            record.levelname = f"{color}{original}{_RESET}" if color else original
        try:
            return super().format(record)
        finally:
            record.levelname = original


class _TranscriptHandler(logging.FileHandler):
    """File handler that flushes and fsyncs every record so aborted runs keep their log."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        if self.stream is not None:
            os.fsync(self.stream.fileno())


def _should_use_color() -> bool:
    if os.getenv("NO_COLOR"):
        return False
    return sys.stderr.isatty()


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv("NEXUS_LOG_LEVEL", _DEFAULT_LOG_LEVEL)).upper()
    resolved = logging.getLevelName(candidate)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def transcript_path(prefix: str, *, directory: Path | None = None, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return (directory or Path(tempfile.gettempdir())) / f"{prefix}-{stamp}.log"


def configure_logging(*, level: str | int | None = None, force: bool = False) -> None:
    root = logging.getLogger()
    resolved_level = _resolve_level(level)

    if root.handlers and not force:
        has_transcript = any(isinstance(h, _TranscriptHandler) for h in root.handlers)
        root.setLevel(logging.DEBUG if has_transcript else resolved_level)
        for handler in root.handlers:
            if not isinstance(handler, _TranscriptHandler):
                handler.setLevel(resolved_level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(resolved_level)
    handler.setFormatter(
        _ColorFormatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt=_DATE_FORMAT,
            use_color=_should_use_color(),
        )
    )
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved_level)


def attach_transcript(log_file: Path) -> logging.Handler:
    """Append every record, at DEBUG, to ``log_file`` as it is emitted."""
    root = logging.getLogger()
    for existing in root.handlers:
        if isinstance(existing, _TranscriptHandler) and Path(existing.baseFilename) == log_file.resolve():
            return existing
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = _TranscriptHandler(log_file, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=_TRANSCRIPT_FORMAT, datefmt=_DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    return handler


def detach_transcript(handler: logging.Handler) -> None:
    root = logging.getLogger()
    root.removeHandler(handler)
    handler.close()
    if not any(isinstance(h, _TranscriptHandler) for h in root.handlers):
        root.setLevel(_resolve_level(None))
