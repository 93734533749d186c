"""Logging setup and configuration."""

import io
import logging
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# One log line per HTTP request at DEBUG; with hundreds of tailers this
# drowns everything else
NOISY_LOGGERS = [
    "botocore",
    "boto3",
    "urllib3",
    "aiohttp",
    "aiokafka",
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.storage",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    Timed rotation that moves rotated files out of the live directory.

    ``logs/2026-01-05/logtail_0105_1430_brave-tiger.log`` rotates to
    ``logs/archive/2026-01-05/logtail_0105_1430_brave-tiger.log.2026-01-05``.
    Without ``archive_dir`` the archive sits next to the log file.
    """

    def __init__(
        self,
        filename,
        when="midnight",
        interval=1,
        backupCount=0,
        encoding=None,
        delay=False,
        utc=False,
        archive_dir=None,
    ):
        super().__init__(filename, when, interval, backupCount, encoding, delay, utc)
        self.archive_dir = (
            Path(archive_dir) if archive_dir else Path(self.baseFilename).parent / "archive"
        )
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()

        live = Path(self.baseFilename)
        for rotated in live.parent.glob(f"{live.name}.*"):
            try:
                shutil.move(str(rotated), str(self.archive_dir / rotated.name))
            except OSError as e:
                # Logging from inside a handler would recurse
                print(f"Warning: Failed to archive {rotated}: {e}", file=sys.stderr)


def get_log_file_path(
    log_dir: Path,
    name: str = "logtail",
    instance_id: str | None = None,
) -> Path:
    """
    ``{log_dir}/{YYYY-MM-DD}/{name}_{MMDD}_{HHMM}[_{instance_id}].log``

    The instance id keeps replicas sharing a volume out of each other's files.
    """
    now = datetime.now()
    stem = f"{name}_{now:%m%d}_{now:%H%M}"
    if instance_id:
        stem = f"{stem}_{instance_id}"
    return log_dir / f"{now:%Y-%m-%d}" / f"{stem}.log"


def _console_handler() -> logging.StreamHandler:
    stream = sys.stdout
    if sys.platform == "win32":
        # Log messages carry arbitrary UTF-8 from the tailed streams
        stream = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ConsoleFormatter())
    return handler


def _archive_dir_for(log_file: Path, log_dir: Path) -> Path:
    try:
        return log_dir / "archive" / log_file.relative_to(log_dir).parent
    except ValueError:
        return log_file.parent / "archive"


def _file_handler(
    log_file: Path,
    log_dir: Path,
    json_format: bool,
    level: int,
    rotation_when: str,
    rotation_interval: int,
    backup_count: int,
) -> ArchivingTimedRotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = ArchivingTimedRotatingFileHandler(
        log_file,
        when=rotation_when,
        interval=rotation_interval,
        backupCount=backup_count,
        encoding="utf-8",
        archive_dir=_archive_dir_for(log_file, log_dir),
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "logtail",
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure root logging once for the process.

    Console output is human readable. File output is JSON lines (or plain
    text with ``json_format=False``) rotated on ``rotation_when``. With
    ``log_to_stdout`` no file is opened and the console handler takes the
    file level, which suits containers whose stdout is collected.

    ``worker_id`` is stamped on every record through the log context and
    appended to the log file name.

    Returns:
        The ``name`` logger
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    if worker_id:
        set_log_context(worker_id=worker_id)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    console_handler = _console_handler()
    log_file = None
    if log_to_stdout:
        console_handler.setLevel(min(console_level, file_level))
    else:
        console_handler.setLevel(console_level)
        log_file = get_log_file_path(log_dir, name=name, instance_id=worker_id)
        root_logger.addHandler(
            _file_handler(
                log_file,
                log_dir,
                json_format,
                file_level,
                rotation_when,
                rotation_interval,
                backup_count,
            )
        )
    root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging initialized: stdout-only mode")
    else:
        logger.debug(
            f"Logging initialized: file={log_file}, json={json_format}",
            extra={"path": str(log_file)},
        )
    return logger
