import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from articlequeue.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_TRACEBACK_TAIL = 5
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")

_log_path: Path | None = None


class TruncatedFormatter(logging.Formatter):
  """Console formatter that keeps only the header and tail of a traceback.

  Generation failures from the model provider produce deep stacks; the file
  handler keeps the full trace.
  """

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    if len(lines) <= _TRACEBACK_TAIL + 1:
      return "".join(lines)
    return "".join([lines[0], "    ...\n", *lines[-_TRACEBACK_TAIL:]])


def _rotated_name(default_name: str) -> str:
  """Rename rotated backups from ``x.log.1`` to ``x.log-1``."""
  stem, _, suffix = default_name.rpartition(".")
  return f"{stem}-{suffix}" if suffix.isdigit() else default_name


def _open_log_file(log_dir: Path) -> Path:
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"articlequeue_{time.strftime('%Y%m%d_%H%M%S')}.log"
    log_path.touch(exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Cannot write logs under {log_dir}: {exc}") from exc
  return log_path


def _build_handlers(settings: Settings) -> tuple[list[logging.Handler], Path]:
  log_path = _open_log_file(Path(settings.log_dir))

  console = logging.StreamHandler(sys.stdout)
  console.setFormatter(TruncatedFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))

  rotating = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  rotating.namer = _rotated_name
  rotating.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
  return [console, rotating], log_path


def setup_logging(settings: Settings) -> Path:
  """Send application and server logs to stdout and a rotating file."""
  handlers, log_path = _build_handlers(settings)
  logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO, handlers=handlers, force=True)
  for name in _SERVER_LOGGERS:
    server_logger = logging.getLogger(name)
    server_logger.handlers = list(handlers)
    server_logger.propagate = False

  if not settings.debug:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
  return log_path


def _initialize_logging(settings: Settings) -> None:
  """Configure logging the first time the app starts in this process."""
  global _log_path
  if _log_path is not None:
    return
  _log_path = setup_logging(settings)
  logging.getLogger("articlequeue.core.logging").info("Logging initialized; writing to %s", _log_path)
