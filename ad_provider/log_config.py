"""Настройка логирования для приложений, использующих клиент каталога.

- Консольный handler: всегда.
- Файловый handler (опционально): ротация ежедневно (midnight) через
  TimedRotatingFileHandler, хранится `retention_days` старых файлов.
- Уровень: из настроек (по умолчанию INFO). Логгер ldap3 не ниже WARNING.
"""
from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler

_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Отслеживаем установленные handlers, чтобы при реконфигурации удалять старые.
_file_handler: logging.Handler | None = None
_console_handler: logging.Handler | None = None


def _clamp_level(level: str) -> tuple[str, int]:
    level_str = (level or "INFO").strip().upper()
    if level_str not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level_str = "INFO"
    return level_str, getattr(logging, level_str, logging.INFO)


def setup_logging(level: str = "INFO", log_file: str = "", retention_days: int = 30) -> None:
    global _file_handler, _console_handler

    level_str, log_level = _clamp_level(level)
    retention_days = max(1, min(365, int(retention_days or 30)))

    root = logging.getLogger()
    # Удаляем предыдущие наши handlers (при реконфигурации)
    if _file_handler and _file_handler in root.handlers:
        root.removeHandler(_file_handler)
        _file_handler.close()
    _file_handler = None
    if _console_handler and _console_handler in root.handlers:
        root.removeHandler(_console_handler)

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    # Консольный handler
    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(formatter)
    _console_handler = ch
    root.addHandler(ch)

    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)
        # Ротация по дате (midnight), хранение retention_days файлов.
        fh = TimedRotatingFileHandler(
            log_file,
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
        root.addHandler(fh)

    root.setLevel(log_level)

    # Подавляем слишком шумный логгер ldap3
    logging.getLogger("ldap3").setLevel(max(log_level, logging.WARNING))

    logging.getLogger("ad_provider").info(
        "Логирование настроено: уровень=%s, файл=%s, хранение=%d дней",
        level_str, log_file or "-", retention_days,
    )


def setup_logging_from_settings(settings) -> None:
    """Применяет настройки `AD_LOG_*` из `DirectorySettings`."""
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        retention_days=settings.log_retention_days,
    )
