import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter
from opentelemetry.sdk.resources import Resource

from .config import settings


def setup_logging(level: str | None = None) -> LoggerProvider:
    """Route Python logging through OpenTelemetry with a console exporter."""
    level = (level or settings.LOG_LEVEL).upper()

    logger_provider = LoggerProvider(resource=Resource.create({"service.name": settings.APP_NAME}))
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(ConsoleLogRecordExporter()))
    set_logger_provider(logger_provider)

    root = logging.getLogger()
    root.addHandler(LoggingHandler(level=getattr(logging, level), logger_provider=logger_provider))
    root.setLevel(level)

    # Plain stdout handler so startup output is visible before the OTel batch flushes
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root.addHandler(stream_handler)

    # Statement echo is controlled by the engine, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logger_provider

