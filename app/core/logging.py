import logging
import sys
import os
from pythonjsonlogger.json import JsonFormatter

def setup_logging(level: str = None):
    """
    Configures centralized JSON logging on stdout for container log collection.
    Keeps the fleet services verbose and quiets database/HTTP transport noise.
    """
    # 1. Get the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())

    # 2. Prevent duplicate logs by removing existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # 3. StreamHandler on stdout
    log_handler = logging.StreamHandler(sys.stdout)

    # 4. JSON format; structured fields come in through `extra=`
    formatter = JsonFormatter(
        fmt='%(asctime)s %(levelname)s %(name)s %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%SZ'
    )
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    # 5. Library-specific verbosity
    logging.getLogger("services").setLevel(logging.INFO)

    # Noise reduction (WARNING) for infrastructure and transport layers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)

    root_logger.info("Logging infrastructure initialized successfully.")
