import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

def setup_logging(log_dir: Optional[Path], debug: bool = False) -> logging.Logger:
    """Configures the clipshrink logger: a file handler, plus stderr in debug mode."""
    logger = logging.getLogger("clipshrink")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "clipshrink.log")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if debug or log_dir is None:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
        logger.addHandler(console_handler)

    return logger
