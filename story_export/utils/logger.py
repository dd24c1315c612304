"""
Logging for the story export system

Every logger lives under the ``story_export`` namespace so one call to
``setup_logging`` configures the whole pipeline. Modules ask for
``get_logger(__name__)``; classes mix in ``LoggerMixin`` and log under
``<module>.<ClassName>``.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, Optional

from rich.logging import RichHandler

LOGGER_NAME = 'story_export'
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger inside the story_export namespace"""
    if not name or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if not name.startswith(f'{LOGGER_NAME}.'):
        name = f'{LOGGER_NAME}.{name}'
    return logging.getLogger(name)


def _file_handler(log_config: Dict[str, Any], formatter: logging.Formatter) -> Optional[logging.Handler]:
    log_file = log_config.get('file', './logs/story_export.log')
    if not log_file:
        return None

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=log_config.get('max_size_mb', 20) * 1024 * 1024,
        backupCount=log_config.get('backup_count', 3),
        encoding='utf-8'
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: 'Config') -> logging.Logger:
    """Configure the story_export logger from the ``logging`` config section"""
    log_config = config.logging
    root = get_logger()
    root.setLevel(getattr(logging, str(log_config.get('level', 'INFO')).upper()))

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    file_handler = _file_handler(log_config, logging.Formatter(log_config.get('format', DEFAULT_FORMAT)))
    if file_handler is not None:
        root.addHandler(file_handler)

    if log_config.get('console', True):
        # Shares the terminal with the rich progress bar in main.py
        console_handler = RichHandler(show_path=False, rich_tracebacks=True)
        console_handler.setFormatter(logging.Formatter('%(name)s: %(message)s'))
        root.addHandler(console_handler)

    return root


class LoggerMixin:
    """Gives a class a logger named after its module and class"""

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, '_logger'):
            cls = type(self)
            self._logger = get_logger(f'{cls.__module__}.{cls.__name__}')
        return self._logger
