import logging
import sys
from middleware import RequestIDMiddleware

# Libraries that are chatty at INFO; they log at WARNING unless LOG_LEVEL is DEBUG
QUIET_LOGGERS = ("sqlalchemy.engine", "celery.app.trace", "httpx")


class ContextualFilter(logging.Filter):
    """Stamps each record with the current request ID ("N/A" in celery workers and at startup)."""
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = RequestIDMiddleware.request_id_context().get()
        return True


def setup_logging(log_level: str = "INFO", log_filename: str | None = "ab_testing_service.log"):
    level = logging.getLevelName(log_level.upper())
    log_filter = ContextualFilter()
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(request_id)s] - %(name)s - %(message)s'
    )

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_filename:
        handlers.append(logging.FileHandler(log_filename, mode='a'))

    for handler in handlers:
        handler.addFilter(log_filter)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers)

    if level != logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
