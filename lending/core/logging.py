import logging
import sys

from lending.core.config import settings


def setup_logging() -> None:
    log_level = logging.DEBUG if settings.APP_ENV == "development" else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Silence noisy libraries in production
    if settings.APP_ENV != "development":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # aiosqlite logs every cursor operation at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.INFO)
