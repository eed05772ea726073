import logging
import sys
import os
from pathlib import Path
from typing import Any, Dict, Optional
from loguru import logger
import json
from datetime import date

from app.utils.context import get_request_id

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[request_id]}</cyan> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# Standard-library loggers whose records are routed into loguru
INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "celery")


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru, tagged with the current request id."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except (AttributeError, ValueError):
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(request_id=get_request_id() or "app").opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


class CustomizeLogger:
    @classmethod
    def make_logger(cls, config_path: Path, environment: str = "logger"):
        config = cls.load_logging_config(config_path)
        section: Dict[str, Any] = config.get(environment, config.get("logger", {}))
        filename = section.get("filename", "vibecheck.log")

        return cls.customize_logging(
            log_dir=section.get("log_dir"),
            filename=f"{date.today():%Y-%m-%d}-{filename}",
            level=section.get("level", "info"),
            rotation=section.get("rotation", "20 MB"),
            retention=section.get("retention", "1 month"),
            console_format=section.get("console_format", DEFAULT_FORMAT),
            file_format=section.get("file_format", DEFAULT_FORMAT),
            use_json_logs=section.get("use_json_logs", False),
        )

    @classmethod
    def customize_logging(
        cls,
        log_dir: Optional[str],
        filename: str,
        level: str,
        rotation: str,
        retention: str,
        console_format: str,
        file_format: str,
        use_json_logs: bool = False,
    ):
        level = level.upper()
        logger.remove()
        logger.configure(extra={"request_id": "app"})

        logger.add(
            sys.stdout,
            enqueue=True,
            backtrace=True,
            level=level,
            format=console_format,
            colorize=True,
        )

        # Testing config has no log_dir and logs to the console only
        if log_dir:
            if use_json_logs and file_format == "json":
                file_options: Dict[str, Any] = {"serialize": True}
            else:
                file_options = {"format": file_format}
            logger.add(
                os.path.join(log_dir, filename),
                rotation=rotation,
                retention=retention,
                enqueue=True,
                backtrace=True,
                level=level,
                colorize=False,
                **file_options,
            )

        cls._setup_intercept_handlers()
        return logger

    @staticmethod
    def _setup_intercept_handlers():
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        for name in INTERCEPTED_LOGGERS:
            logging.getLogger(name).handlers = [InterceptHandler()]

    @staticmethod
    def load_logging_config(config_path: Path) -> Dict[str, Any]:
        if not config_path.is_file():
            return {}
        with open(config_path) as config_file:
            return json.load(config_file)


config_path = Path(__file__).resolve().parents[2] / "logging_config.json"
environment = os.getenv("ENVIRONMENT", "development")
if environment not in ("production", "testing"):
    environment = "logger"
custom_logger = CustomizeLogger.make_logger(config_path, environment)


def get_logger():
    """Logger bound to the request id of the current context (or "app")."""
    return custom_logger.bind(request_id=get_request_id() or "app")
