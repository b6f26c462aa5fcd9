import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class Log:
    """Centralized logging with structured format."""

    _logger: logging.Logger = logging.getLogger("fileconvert")

    @classmethod
    def configure(
        cls,
        log_level: str,
        log_directory: Path | None = None,
        retention_days: int = 365,
    ) -> None:
        """Configure the logger level, the stdout handler and optional rotating files.

        With a log directory, two daily-rotating files are written: every record
        to ``application.log`` and ERROR and above to ``error.log``. Each keeps
        ``retention_days`` rotated files.
        """
        cls._logger.setLevel(log_level.upper())
        if cls._logger.handlers:
            return
        formatter = logging.Formatter(_FORMAT)

        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        cls._logger.addHandler(stream_handler)

        if log_directory is None:
            return
        log_directory.mkdir(parents=True, exist_ok=True)
        for filename, level in (("application.log", logging.NOTSET), ("error.log", logging.ERROR)):
            file_handler = TimedRotatingFileHandler(
                log_directory / filename,
                when="midnight",
                backupCount=retention_days,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            cls._logger.addHandler(file_handler)

    @classmethod
    def reset(cls) -> None:
        """Detach and close every handler (used between CLI runs and in tests)."""
        for handler in list(cls._logger.handlers):
            cls._logger.removeHandler(handler)
            handler.close()

    @classmethod
    def info(cls, message: str, **kwargs: object) -> None:
        """Log an info message."""
        cls._logger.info(message, extra=kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> None:
        """Log an error message."""
        cls._logger.error(message, extra=kwargs)

    @classmethod
    def warning(cls, message: str, **kwargs: object) -> None:
        """Log a warning message."""
        cls._logger.warning(message, extra=kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> None:
        """Log a debug message."""
        cls._logger.debug(message, extra=kwargs)
