"""Настройка логирования приложения.

Файлы логов хранятся в `data/logs/` (относительно CWD), ротация по дате
через TimedRotatingFileHandler.

- Ротация: ежедневно (midnight).
- Хранение: LOG_RETENTION_DAYS (по умолчанию 30).
- Уровень: LOG_LEVEL (по умолчанию INFO).
"""
from __future__ import annotations

import glob
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler

_LOG_DIR = os.path.join(os.getcwd(), "data", "logs")
_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "ldap3")

# Отслеживаем установленные handlers, чтобы при реконфигурации удалять старые.
_file_handler: logging.Handler | None = None
_console_handler: logging.Handler | None = None


def setup_logging(level: str = "INFO", retention_days: int = 30, log_dir: str | None = None) -> None:
    """Настраивает корневой логгер: файл с ротацией по дате + консоль."""
    global _file_handler, _console_handler

    level_str = (level or "INFO").strip().upper()
    if level_str not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level_str = "INFO"
    log_level = getattr(logging, level_str, logging.INFO)
    retention_days = max(1, min(365, int(retention_days or 30)))

    root = logging.getLogger()
    for h in (_file_handler, _console_handler):
        if h is not None and h in root.handlers:
            root.removeHandler(h)
            h.close()

    log_dir = log_dir or _LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    fh = TimedRotatingFileHandler(
        os.path.join(log_dir, "app.log"),
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
        utc=True,
    )
    fh.suffix = "%Y-%m-%d"
    fh.setLevel(log_level)
    fh.setFormatter(formatter)
    _file_handler = fh

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(formatter)
    _console_handler = ch

    root.setLevel(log_level)
    root.addHandler(fh)
    root.addHandler(ch)

    # файлы, оставшиеся от прежних настроек хранения
    _cleanup_old_logs(log_dir, retention_days)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logging.getLogger("adreports").info(
        "Логирование настроено: уровень=%s, хранение=%d дней", level_str, retention_days,
    )


def _cleanup_old_logs(log_dir: str, retention_days: int) -> None:
    """Удаляет файлы логов старше retention_days."""
    cutoff = time.time() - (retention_days * 86400)
    for f in glob.glob(os.path.join(log_dir, "app.log.*")):
        try:
            if os.path.getmtime(f) < cutoff:
                os.remove(f)
        except OSError:
            pass
