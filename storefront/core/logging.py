import logging
import os
from typing import Optional
from storefront.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Настройка логирования: консоль + файл (если задан LOG_FILE)"""
    level = (level or settings.LOG_LEVEL).upper()
    log_file = log_file if log_file is not None else settings.LOG_FILE

    root = logging.getLogger()
    root.setLevel(level)

    # Повторный вызов не должен дублировать хендлеры
    if getattr(root, "_storefront_configured", False):
        return

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # httpx логирует каждый запрос на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    root._storefront_configured = True
