import os
from pathlib import Path

from loguru import logger

log_dir = Path(os.getenv("WIKIMIRROR_LOG_DIR", "logs"))
log_file = log_dir / "wikimirror_{time}.log"

logger.remove()
logger.add(
    log_file,
    rotation="256 MB",
    retention="10 days",
    compression="zip",
    encoding="utf-8",
    level=os.getenv("WIKIMIRROR_LOG_LEVEL", "DEBUG"),
    enqueue=True,
)
